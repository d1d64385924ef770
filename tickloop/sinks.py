import collections
import dataclasses
import logging
import threading
import time
import typing

import mido

import tickloop.constants.timing
import tickloop.event
import tickloop.midi_file
import tickloop.tempo


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class Sink (typing.Protocol):

	"""
	Protocol for the sound-producing collaborator driven by the scheduler.

	Either method may be a coroutine function; the scheduler awaits it in a
	task of its own. Implementations must tolerate concurrent calls.
	"""

	def activate (self, payload: typing.Any, amplitude: float) -> typing.Any:

		"""Start sounding ``payload`` at ``amplitude`` (0-1)."""

		...

	def deactivate (self, payload: typing.Any) -> typing.Any:

		"""Stop sounding ``payload``."""

		...


class CallbackSink:

	"""Adapt a pair of plain callables (sync or async) to the ``Sink`` protocol."""

	def __init__ (
		self,
		activate: typing.Callable[[typing.Any, float], typing.Any],
		deactivate: typing.Optional[typing.Callable[[typing.Any], typing.Any]] = None
	) -> None:

		self._activate = activate
		self._deactivate = deactivate

	def activate (self, payload: typing.Any, amplitude: float) -> typing.Any:
		return self._activate(payload, amplitude)

	def deactivate (self, payload: typing.Any) -> typing.Any:

		if self._deactivate is None:
			return None

		return self._deactivate(payload)


class MidiOutputSink:

	"""
	Send activations as MIDI note messages through a ``mido`` output port.

	Payloads are a note number (sent on ``channel``) or a ``(channel, note)``
	tuple. Amplitude is scaled to velocity 0-127. A payload that is not a
	valid MIDI note raises ``ValueError``; a port that fails to send is
	logged and the call returns.
	"""

	def __init__ (self, port: typing.Any, channel: int = 0) -> None:

		if not 0 <= channel < tickloop.constants.timing.MIDI_CHANNELS:
			raise ValueError("MIDI channel must be between 0 and 15")

		self.port = port
		self.channel = channel

	def _send (self, message: mido.Message) -> None:

		if self.port is None:
			return

		try:
			self.port.send(message)
		except Exception:
			logger.exception("MIDI send failed (device may be disconnected)")

	def activate (self, payload: typing.Any, amplitude: float) -> None:

		channel, note = tickloop.midi_file.split_payload(payload, self.channel)
		velocity = tickloop.event.amplitude_to_velocity(amplitude)

		self._send(mido.Message('note_on', channel=channel, note=note, velocity=velocity))

	def deactivate (self, payload: typing.Any) -> None:

		channel, note = tickloop.midi_file.split_payload(payload, self.channel)

		self._send(mido.Message('note_off', channel=channel, note=note, velocity=0))

	def panic (self) -> None:

		"""Send All Notes Off (CC 123) and All Sound Off (CC 120) on every channel."""

		if self.port is None:
			return

		logger.info("Panic: sending all notes off.")

		try:
			for channel in range(tickloop.constants.timing.MIDI_CHANNELS):
				self.port.send(mido.Message('control_change', channel=channel, control=123, value=0))
				self.port.send(mido.Message('control_change', channel=channel, control=120, value=0))
		except Exception:
			logger.exception("MIDI panic failed (device may be disconnected)")

	def close (self) -> None:

		if self.port is None:
			return

		self.port.close()
		self.port = None


@dataclasses.dataclass (frozen=True)
class Record:

	"""One sink call captured by ``RecordingSink``."""

	time: float
	action: str
	payload: typing.Any
	amplitude: typing.Optional[float] = None


class RecordingSink:

	"""
	Capture every activate/deactivate call with a timestamp.

	``clock`` supplies the timestamp; pass ``scheduler.elapsed`` to record
	times relative to the start of playback (simulated times in render mode).
	"""

	def __init__ (self, clock: typing.Optional[typing.Callable[[], float]] = None) -> None:

		self.clock = clock if clock is not None else time.perf_counter
		self.records: typing.List[Record] = []
		self._lock = threading.Lock()

	def _append (self, record: Record) -> None:

		with self._lock:
			self.records.append(record)

	def activate (self, payload: typing.Any, amplitude: float) -> None:
		self._append(Record(time=self.clock(), action='activate', payload=payload, amplitude=amplitude))

	def deactivate (self, payload: typing.Any) -> None:
		self._append(Record(time=self.clock(), action='deactivate', payload=payload))

	def activations (self) -> typing.List[Record]:
		return [record for record in self.records if record.action == 'activate']

	def deactivations (self) -> typing.List[Record]:
		return [record for record in self.records if record.action == 'deactivate']

	def save (
		self,
		path: tickloop.midi_file.PathType,
		tempo: tickloop.tempo.Tempo,
		ppq: int = tickloop.constants.timing.DEFAULT_PPQ,
		default_channel: int = 0
	) -> None:

		"""
		Write the recording to a MIDI file.

		Timestamps are taken as seconds from the start of playback and converted
		to ticks at ``tempo``. Records whose payload is not a MIDI note are
		skipped with a warning.
		"""

		if not self.records:
			logger.warning(f"Nothing recorded - {path} not written")
			return

		messages: typing.List[typing.Tuple[int, mido.Message]] = []
		open_ticks: typing.DefaultDict[typing.Tuple[int, int], typing.Deque[int]] = collections.defaultdict(collections.deque)
		skipped = 0

		for record in self.records:

			try:
				channel, note = tickloop.midi_file.split_payload(record.payload, default_channel)
			except ValueError:
				skipped += 1
				continue

			tick = int(round(tempo.seconds_to_beats(record.time) * ppq))

			if record.action == 'activate':
				velocity = tickloop.midi_file.note_on_velocity(record.amplitude if record.amplitude is not None else 0.0)
				messages.append((tick, mido.Message('note_on', channel=channel, note=note, velocity=velocity)))
				open_ticks[(channel, note)].append(tick)
			else:
				# Never at or before the tick of the activation it releases.
				if open_ticks[(channel, note)]:
					tick = max(tick, open_ticks[(channel, note)].popleft() + 1)
				messages.append((tick, mido.Message('note_off', channel=channel, note=note, velocity=0)))

		if skipped:
			logger.warning(f"Skipped {skipped} recorded call(s) whose payload is not a MIDI note")

		tickloop.midi_file.write_messages(messages, tempo, path, ppq)
