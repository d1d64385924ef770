import dataclasses
import logging
import math
import numbers
import typing

import tickloop.constants.durations
import tickloop.constants.velocity


logger = logging.getLogger(__name__)

DEFAULT_DURATION = tickloop.constants.durations.DEFAULT_DURATION
DEFAULT_AMPLITUDE = tickloop.constants.velocity.DEFAULT_AMPLITUDE

EventRow = typing.Union["Event", typing.Mapping[str, typing.Any], typing.Sequence[typing.Any]]


def _is_real (value: typing.Any) -> bool:

	return isinstance(value, numbers.Real) and not isinstance(value, bool)


def clamp_amplitude (value: typing.Any) -> float:

	"""
	Clamp an amplitude into [0, 1].

	``None`` and NaN fall back to the default amplitude rather than failing.
	"""

	if value is None or not _is_real(value) or math.isnan(value):
		return DEFAULT_AMPLITUDE

	return float(max(tickloop.constants.velocity.MIN_AMPLITUDE, min(tickloop.constants.velocity.MAX_AMPLITUDE, value)))


def velocity_to_amplitude (velocity: int) -> float:

	"""Convert a MIDI velocity (0-127) to an amplitude."""

	if not _is_real(velocity):
		return DEFAULT_AMPLITUDE

	return clamp_amplitude(velocity / tickloop.constants.velocity.MAX_VELOCITY)


def amplitude_to_velocity (amplitude: float) -> int:

	"""Convert an amplitude to a MIDI velocity (0-127)."""

	return int(round(clamp_amplitude(amplitude) * tickloop.constants.velocity.MAX_VELOCITY))


def normalize_duration (duration: typing.Any) -> float:

	"""
	Return a usable positive duration in beats.

	Missing or malformed durations (``None``, non-numeric, NaN, infinite,
	zero or negative) become ``DEFAULT_DURATION``.
	"""

	if _is_real(duration) and math.isfinite(duration) and duration > 0:
		return float(duration)

	logger.debug(f"Duration {duration!r} is not usable - defaulting to {DEFAULT_DURATION} beats")

	return DEFAULT_DURATION


@dataclasses.dataclass (frozen=True)
class Event:

	"""
	A scheduled sound trigger: an onset in beats, a payload, a duration and an amplitude.

	Events are read-only once built. The payload is opaque to the scheduler;
	the MIDI sinks expect a note number or a ``(channel, note)`` tuple.
	"""

	offset: float
	payload: typing.Any
	duration: float = DEFAULT_DURATION
	amplitude: float = DEFAULT_AMPLITUDE

	def __post_init__ (self) -> None:

		"""Validate the offset and normalize duration and amplitude."""

		if not _is_real(self.offset) or not math.isfinite(self.offset):
			raise ValueError(f"Event offset must be a finite number, got {self.offset!r}")

		if self.offset < 0:
			raise ValueError("Event offset cannot be negative")

		object.__setattr__(self, "offset", float(self.offset))
		object.__setattr__(self, "duration", normalize_duration(self.duration))
		object.__setattr__(self, "amplitude", clamp_amplitude(self.amplitude))

	@property
	def end (self) -> float:

		"""Beat position at which the event is deactivated."""

		return self.offset + self.duration


def _event_from_mapping (row: typing.Mapping[str, typing.Any]) -> Event:

	payload = None

	for key in ("payload", "pitch", "note"):
		if key in row:
			payload = row[key]
			break

	if "amplitude" in row:
		amplitude = row["amplitude"]
	elif "velocity" in row:
		amplitude = velocity_to_amplitude(row["velocity"])
	else:
		amplitude = DEFAULT_AMPLITUDE

	return Event(
		offset = row.get("offset", 0),
		payload = payload,
		duration = row.get("duration"),
		amplitude = amplitude
	)


def _event_from_sequence (row: typing.Sequence[typing.Any]) -> Event:

	if len(row) < 2 or len(row) > 4:
		raise ValueError(f"Event rows need (offset, payload[, duration[, amplitude]]), got {row!r}")

	duration = row[2] if len(row) > 2 else None
	amplitude = row[3] if len(row) > 3 else DEFAULT_AMPLITUDE

	return Event(offset=row[0], payload=row[1], duration=duration, amplitude=amplitude)


def make_event (row: EventRow) -> Event:

	"""Build one event from an ``Event``, a mapping, or an ``(offset, payload, ...)`` tuple."""

	if isinstance(row, Event):
		return row

	if isinstance(row, typing.Mapping):
		return _event_from_mapping(row)

	if isinstance(row, (list, tuple)):
		return _event_from_sequence(row)

	raise ValueError(f"Cannot build an event from {row!r}")


def make_events (rows: typing.Iterable[EventRow]) -> typing.List[Event]:

	"""
	Build a list of events from hand-authored data, sorted by offset.

	Each row may be an ``Event``, a dict with ``offset``, ``payload`` (or
	``pitch``/``note``), ``duration`` and ``amplitude`` (or a MIDI
	``velocity``), or a tuple ``(offset, payload[, duration[, amplitude]])``.
	The sort is stable, so rows sharing an offset keep their written order.

	Example:
		```python
		riff = make_events([
			(0.0, 60, 0.25),
			(0.5, 63, 0.25, 0.6),
			{"offset": 1.0, "pitch": 67, "duration": 0.5, "velocity": 90},
		])
		```
	"""

	events = [make_event(row) for row in rows]
	events.sort(key=lambda event: event.offset)

	return events


def events_from_ticks (rows: typing.Iterable[typing.Sequence[typing.Any]], ppq: int) -> typing.List[Event]:

	"""
	Convert tick-timed rows ``(tick, payload, duration_ticks[, velocity])`` to events.

	``ppq`` is the pulses-per-quarter-note resolution the ticks were written in.
	"""

	if ppq <= 0:
		raise ValueError("Pulses per quarter note must be positive")

	events: typing.List[Event] = []

	for row in rows:

		if len(row) < 3 or len(row) > 4:
			raise ValueError(f"Tick rows need (tick, payload, duration_ticks[, velocity]), got {row!r}")

		tick, payload, duration_ticks = row[0], row[1], row[2]
		velocity = row[3] if len(row) > 3 else tickloop.constants.velocity.DEFAULT_VELOCITY

		duration = duration_ticks / ppq if _is_real(duration_ticks) else None

		events.append(Event(
			offset = tick / ppq if _is_real(tick) else tick,
			payload = payload,
			duration = duration,
			amplitude = velocity_to_amplitude(velocity)
		))

	events.sort(key=lambda event: event.offset)

	return events


def span (events: typing.Iterable[Event]) -> float:

	"""Beat position where the last event ends, or 0 for no events."""

	return max((event.end for event in events), default=0.0)
