import dataclasses
import math
import typing

import mido


@dataclasses.dataclass (frozen=True)
class Tempo:

	"""
	A tempo in beats per minute and the timing quantities derived from it.

	Non-positive or non-finite tempos are rejected when the object is built,
	since they would make every fire time undefined.

	Example:
		```python
		tempo = Tempo(120)
		tempo.ms_per_beat           # 500.0
		tempo.beats_to_ms(0.25)     # 125.0
		```
	"""

	bpm: float

	def __post_init__ (self) -> None:

		"""Validate the tempo."""

		if isinstance(self.bpm, bool) or not isinstance(self.bpm, (int, float)):
			raise ValueError(f"BPM must be a number, got {self.bpm!r}")

		if not math.isfinite(self.bpm) or self.bpm <= 0:
			raise ValueError("BPM must be positive")

	@classmethod
	def from_microseconds (cls, us_per_beat: int) -> "Tempo":

		"""Build a tempo from a MIDI ``set_tempo`` value (microseconds per beat)."""

		if us_per_beat <= 0:
			raise ValueError("Microseconds per beat must be positive")

		return cls(mido.tempo2bpm(us_per_beat))

	@property
	def ms_per_beat (self) -> float:

		"""Milliseconds per beat: ``60000 / bpm``."""

		return 60000 / self.bpm

	@property
	def seconds_per_beat (self) -> float:
		return 60.0 / self.bpm

	@property
	def microseconds_per_beat (self) -> int:

		"""The tempo as a MIDI ``set_tempo`` value."""

		return mido.bpm2tempo(self.bpm)

	def beats_to_ms (self, beats: float) -> float:
		return beats * self.ms_per_beat

	def beats_to_seconds (self, beats: float) -> float:
		return beats * 60.0 / self.bpm

	def seconds_to_beats (self, seconds: float) -> float:
		return seconds * self.bpm / 60.0


def as_tempo (value: typing.Union[Tempo, float]) -> Tempo:

	"""Accept either a ``Tempo`` or a bare BPM number."""

	if isinstance(value, Tempo):
		return value

	return Tempo(value)
