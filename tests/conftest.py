import typing

import mido
import pytest


class FakeMidiOut:

	"""MIDI output stub that keeps every message it is sent."""

	def __init__ (self, name: str = "Dummy MIDI") -> None:

		self.name = name
		self.sent: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Store the outgoing message."""

		self.sent.append(message)

	def close (self) -> None:

		self.closed = True


class BrokenMidiOut (FakeMidiOut):

	"""MIDI output stub whose device has gone away."""

	def send (self, message: mido.Message) -> None:

		raise OSError("device disconnected")


# Module-level reference so tests can inspect the most recently opened port.
_current_fake_output: typing.Optional[FakeMidiOut] = None


def _fake_get_output_names () -> typing.List[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	global _current_fake_output
	_current_fake_output = FakeMidiOut(name)
	return _current_fake_output


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido so no real MIDI backend is needed."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def fake_port () -> FakeMidiOut:

	return FakeMidiOut()
