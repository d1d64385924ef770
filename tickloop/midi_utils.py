import logging
import typing

import mido


logger = logging.getLogger(__name__)


def _prompt_for_device (outputs: typing.List[str]) -> str:

	"""Ask on the console which of several output devices to use."""

	print("\nAvailable MIDI output devices:\n")

	for i, name in enumerate(outputs, 1):
		print(f"  {i}. {name}")

	print()

	while True:
		try:
			choice = int(input(f"Select a device (1-{len(outputs)}): "))
			if 1 <= choice <= len(outputs):
				break
		except ValueError:
			pass
		except EOFError:
			raise RuntimeError("No MIDI output device selected") from None
		print(f"Enter a number between 1 and {len(outputs)}.")

	selected_name = outputs[choice - 1]

	print(f"\nTip: To skip this prompt, pass the device name directly:\n")
	print(f"  python -m tickloop song.mid --device \"{selected_name}\"\n")

	return selected_name


def select_output_device (device_name: typing.Optional[str] = None, interactive: bool = True) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI output port for a ``MidiOutputSink``.

	If ``device_name`` is given, that device is opened. Otherwise the only
	available device is used, or - when several exist and ``interactive`` is
	True - the user is asked to choose one.

	Returns:
		``(device_name, port)``, or ``(None, None)`` when no device could be opened.
	"""

	try:
		outputs = mido.get_output_names()
		logger.info(f"Available MIDI outputs: {outputs}")

		if not outputs:
			logger.error("No MIDI output devices found.")
			return None, None

		if device_name is not None:

			if device_name not in outputs:
				logger.error(f"MIDI output device '{device_name}' not found. Available devices: {outputs}")
				return None, None

			selected_name = device_name

		elif len(outputs) == 1:
			selected_name = outputs[0]
			logger.info(f"One MIDI output found - using '{selected_name}'")

		elif interactive:
			selected_name = _prompt_for_device(outputs)

		else:
			logger.error(f"Several MIDI outputs found and none selected: {outputs}")
			return None, None

		port = mido.open_output(selected_name)
		logger.info(f"Opened MIDI output: {selected_name}")

		return selected_name, port

	except (OSError, RuntimeError, ImportError) as e:
		logger.error(f"Failed to open MIDI output: {e}")
		return None, None
