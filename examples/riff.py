import logging

import tickloop
import tickloop.constants.durations as dur
import tickloop.midi_utils

logging.basicConfig(level=logging.INFO)

# A two-beat minor riff, written as (offset, note, duration, amplitude) rows.
RIFF = [
	(0.0,  48, dur.EIGHTH,    0.9),
	(0.5,  55, dur.SIXTEENTH, 0.5),
	(0.75, 58, dur.SIXTEENTH, 0.5),
	(1.0,  60, dur.QUARTER,   0.8),
	(1.5,  63, dur.EIGHTH,    0.6),
	(1.75, 58, dur.SIXTEENTH),
]

TEMPOS = [110, 120, 132, 120]

device_name, port = tickloop.midi_utils.select_output_device()

if port is None:
	raise SystemExit(1)

sink = tickloop.MidiOutputSink(port, channel=0)
scheduler = tickloop.Scheduler(RIFF, tempo=TEMPOS[0], sink=sink, loop_beats=2)


def on_bar (bar: int) -> None:

	# Every fourth bar moves to the next tempo; it takes effect from the following bar.
	if bar % 4 == 3:
		bpm = TEMPOS[(bar // 4 + 1) % len(TEMPOS)]
		logging.info(f"Bar {bar}: switching to {bpm} BPM")
		scheduler.set_tempo(bpm)


scheduler.on_event("bar", on_bar)

try:
	scheduler.play(bars=32)
finally:
	sink.panic()
	sink.close()
