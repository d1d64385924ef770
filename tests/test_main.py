import pathlib
import typing

import mido
import pytest

import conftest
import tickloop.__main__
import tickloop.midi_file


def _write_riff (path: pathlib.Path) -> None:

	"""Two quarter notes followed by a note on beat 3, at 96 PPQ and 120 BPM."""

	mid = mido.MidiFile(type=1, ticks_per_beat=96)
	mid.tracks.append(mido.MidiTrack([
		mido.MetaMessage('set_tempo', tempo=mido.bpm2tempo(120), time=0),
		mido.Message('note_on', note=60, velocity=100, time=0),
		mido.Message('note_off', note=60, time=96),
		mido.Message('note_on', note=64, velocity=100, time=0),
		mido.Message('note_off', note=64, time=96),
		mido.Message('note_on', note=67, velocity=100, time=96),
		mido.Message('note_off', note=67, time=96),
	]))
	mid.save(str(path))


@pytest.fixture
def riff (tmp_path: pathlib.Path) -> pathlib.Path:

	path = tmp_path / "riff.mid"
	_write_riff(path)
	return path


def _args (riff: pathlib.Path, *extra: str) -> typing.List[str]:

	return [str(riff), "--config", str(riff.parent / "no-config.yaml"), *extra]


def test_render_loop_to_file (riff: pathlib.Path) -> None:

	"""Looping the first two beats twice renders four notes, one beat apart."""

	out = riff.parent / "out.mid"

	assert tickloop.__main__.main(_args(riff, "--loop", "2", "--bars", "2", "--render", str(out))) == 0

	song = tickloop.midi_file.load_midi_file(out)

	assert [(event.offset, event.payload) for event in song.events] == [
		(0.0, (0, 60)),
		(1.0, (0, 64)),
		(2.0, (0, 60)),
		(3.0, (0, 64)),
	]


def test_render_whole_file_at_new_tempo (riff: pathlib.Path) -> None:

	out = riff.parent / "slow.mid"

	assert tickloop.__main__.main(_args(riff, "--bpm", "60", "--render", str(out))) == 0

	song = tickloop.midi_file.load_midi_file(out)

	assert song.tempo.bpm == pytest.approx(60)
	assert [event.offset for event in song.events] == [0.0, 1.0, 3.0]


def test_render_loop_without_bars_is_refused (riff: pathlib.Path) -> None:

	assert tickloop.__main__.main(_args(riff, "--loop", "2", "--render", str(riff.parent / "x.mid"))) == 2


def test_invalid_tempo_is_refused (riff: pathlib.Path) -> None:

	assert tickloop.__main__.main(_args(riff, "--bpm", "0")) == 2


def test_unreadable_file (tmp_path: pathlib.Path) -> None:

	assert tickloop.__main__.main([str(tmp_path / "missing.mid"), "--config", str(tmp_path / "c.yaml")]) == 1


def test_play_sends_notes_then_panics (riff: pathlib.Path, patch_midi: None) -> None:

	"""Real-time playback at a fast tempo reaches the port, then all notes are silenced and the port closed."""

	assert tickloop.__main__.main(_args(riff, "--bpm", "2400", "--device", "Dummy MIDI", "--no-spin-wait")) == 0

	port = conftest._current_fake_output

	assert port is not None
	assert port.closed is True

	notes = [message for message in port.sent if message.type in ('note_on', 'note_off')]

	assert [(message.type, message.note) for message in notes] == [
		('note_on', 60),
		('note_off', 60),
		('note_on', 64),
		('note_off', 64),
		('note_on', 67),
		('note_off', 67),
	]
	assert len([message for message in port.sent if message.type == 'control_change']) == 32


def test_play_without_device (riff: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:

	monkeypatch.setattr(mido, "get_output_names", lambda: [])

	assert tickloop.__main__.main(_args(riff)) == 1


def test_song_length_is_reported (riff: pathlib.Path, caplog: pytest.LogCaptureFixture) -> None:

	out = riff.parent / "out.mid"

	assert tickloop.__main__.main(_args(riff, "--render", str(out))) == 0

	assert "3 notes over 4 beats (1 bar(s) of 4)" in caplog.text
