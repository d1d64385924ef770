"""Read and write Standard MIDI Files as tickloop events.

Reading merges every track, pairs each note-on with the note-off that ends
it, and converts tick positions to beats using the file's
pulses-per-quarter-note resolution::

    song = tickloop.midi_file.load_midi_file("riff.mid")
    song.tempo.bpm          # from the first set_tempo, or 120
    song.beats_per_bar      # from the first time_signature, or 4
    song.events[0].payload  # (channel, note)
"""

import collections
import dataclasses
import logging
import os
import typing

import mido

import tickloop.constants.timing
import tickloop.event
import tickloop.tempo


logger = logging.getLogger(__name__)

PathType = typing.Union[str, "os.PathLike[str]"]


@dataclasses.dataclass (frozen=True)
class Song:

	"""Events read from a MIDI file together with the file's timing information."""

	events: typing.Tuple[tickloop.event.Event, ...]
	tempo: tickloop.tempo.Tempo
	ticks_per_beat: int
	beats_per_bar: float

	@property
	def length_beats (self) -> float:

		"""Beat position where the last note ends."""

		return tickloop.event.span(self.events)

	@property
	def bars (self) -> int:

		"""Number of whole or partial bars spanned by the notes."""

		length = self.length_beats

		if length <= 0:
			return 0

		full, remainder = divmod(length, self.beats_per_bar)

		return int(full) + (1 if remainder > 0 else 0)


def _is_note_on (message: mido.Message) -> bool:

	return message.type == 'note_on' and message.velocity > 0


def _is_note_off (message: mido.Message) -> bool:

	return message.type == 'note_off' or (message.type == 'note_on' and message.velocity == 0)


def load_midi_file (path: PathType, channels: typing.Optional[typing.Iterable[int]] = None) -> Song:

	"""
	Parse a Standard MIDI File into beat-relative events.

	Each note-on is paired first-in-first-out with a later note-off on the
	same channel and note to derive its duration. Notes that are never
	released fall back to the default duration.

	Parameters:
		path: The ``.mid`` file to read.
		channels: Optional MIDI channels (0-15) to keep; all channels when omitted.
	"""

	mid = mido.MidiFile(path)
	ppq = mid.ticks_per_beat

	if ppq <= 0:
		raise ValueError(f"{path}: SMPTE time division is not supported")

	wanted = set(channels) if channels is not None else None

	tempo: typing.Optional[tickloop.tempo.Tempo] = None
	beats_per_bar: typing.Optional[float] = None

	# (channel, note) -> queue of (start_tick, velocity)
	held: typing.Dict[typing.Tuple[int, int], typing.Deque[typing.Tuple[int, int]]] = collections.defaultdict(collections.deque)
	rows: typing.List[typing.Tuple[int, typing.Tuple[int, int], typing.Optional[int], int]] = []
	tick = 0

	for message in mido.merge_tracks(mid.tracks):

		tick += message.time

		if message.is_meta:

			if message.type == 'set_tempo' and tempo is None:
				tempo = tickloop.tempo.Tempo.from_microseconds(message.tempo)

			elif message.type == 'time_signature' and beats_per_bar is None:
				# Bar length in quarter-note beats, e.g. 6/8 -> 3.0
				beats_per_bar = message.numerator * 4 / message.denominator

			continue

		if not hasattr(message, 'channel'):
			continue

		if wanted is not None and message.channel not in wanted:
			continue

		key = (message.channel, message.note) if hasattr(message, 'note') else None

		if key is None:
			continue

		if _is_note_on(message):
			held[key].append((tick, message.velocity))

		elif _is_note_off(message) and held[key]:
			start_tick, velocity = held[key].popleft()
			rows.append((start_tick, key, tick - start_tick, velocity))

	dangling = sum(len(queue) for queue in held.values())

	if dangling:
		logger.warning(f"{path}: {dangling} note(s) never released - using the default duration")

		for key, queue in held.items():
			for start_tick, velocity in queue:
				rows.append((start_tick, key, None, velocity))

	events = tickloop.event.events_from_ticks(rows, ppq)

	song = Song(
		events = tuple(events),
		tempo = tempo if tempo is not None else tickloop.tempo.Tempo(tickloop.constants.timing.DEFAULT_BPM),
		ticks_per_beat = ppq,
		beats_per_bar = beats_per_bar if beats_per_bar is not None else tickloop.constants.timing.DEFAULT_BEATS_PER_BAR
	)

	logger.info(f"Loaded {len(song.events)} notes from {path} ({song.tempo.bpm:.2f} BPM, {ppq} PPQ)")

	return song


def split_payload (payload: typing.Any, default_channel: int = 0) -> typing.Tuple[int, int]:

	"""
	Interpret an event payload as ``(channel, note)``.

	A bare integer is a note on ``default_channel``. Raises ``ValueError`` for
	anything that cannot be sent as MIDI.
	"""

	if isinstance(payload, tuple) and len(payload) == 2:
		channel, note = payload
	else:
		channel, note = default_channel, payload

	if isinstance(channel, bool) or not isinstance(channel, int) or not 0 <= channel < tickloop.constants.timing.MIDI_CHANNELS:
		raise ValueError(f"Invalid MIDI channel in payload {payload!r}")

	if isinstance(note, bool) or not isinstance(note, int) or not 0 <= note <= 127:
		raise ValueError(f"Invalid MIDI note in payload {payload!r}")

	return channel, note


def note_on_velocity (amplitude: float) -> int:

	"""Velocity for a written note_on. Velocity 0 would read back as a note-off, so the floor is 1."""

	return max(1, tickloop.event.amplitude_to_velocity(amplitude))


def write_messages (
	messages: typing.Iterable[typing.Tuple[int, mido.Message]],
	tempo: tickloop.tempo.Tempo,
	path: PathType,
	ppq: int = tickloop.constants.timing.DEFAULT_PPQ
) -> None:

	"""Write ``(absolute_tick, message)`` pairs to a single-track type-1 MIDI file."""

	mid = mido.MidiFile(type=1, ticks_per_beat=ppq)
	track = mido.MidiTrack()
	mid.tracks.append(track)

	track.append(mido.MetaMessage('set_tempo', tempo=tempo.microseconds_per_beat, time=0))

	# Offs sort ahead of ons at the same tick so a repeated note is not cut short.
	ordered = sorted(messages, key=lambda item: (item[0], 0 if _is_note_off(item[1]) else 1))

	last_tick = 0

	for tick, message in ordered:
		delta = max(0, tick - last_tick)
		track.append(message.copy(time=delta))
		last_tick = max(last_tick, tick)

	track.append(mido.MetaMessage('end_of_track', time=0))

	mid.save(path)

	logger.info(f"Saved {len(track) - 2} MIDI messages to {path}")


def save_midi_file (
	events: typing.Iterable[tickloop.event.Event],
	tempo: tickloop.tempo.Tempo,
	path: PathType,
	ppq: int = tickloop.constants.timing.DEFAULT_PPQ,
	default_channel: int = 0
) -> None:

	"""
	Write events to a MIDI file as note-on/note-off pairs.

	Payloads must be MIDI notes (an ``int`` or ``(channel, note)``).
	"""

	if ppq <= 0:
		raise ValueError("Pulses per quarter note must be positive")

	messages: typing.List[typing.Tuple[int, mido.Message]] = []

	for event in events:

		channel, note = split_payload(event.payload, default_channel)
		on_tick = int(round(event.offset * ppq))
		# A note shorter than one tick still lasts one tick.
		off_tick = max(on_tick + 1, int(round(event.end * ppq)))

		messages.append((on_tick, mido.Message('note_on', channel=channel, note=note, velocity=note_on_velocity(event.amplitude))))
		messages.append((off_tick, mido.Message('note_off', channel=channel, note=note, velocity=0)))

	write_messages(messages, tempo, path, ppq)
