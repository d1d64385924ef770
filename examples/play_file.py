"""Play a Standard MIDI File, or render it to a new file as fast as possible.

Usage:
    python examples/play_file.py song.mid
    python examples/play_file.py song.mid --render out.mid --bpm 90
"""

import argparse
import asyncio
import logging

import tickloop
import tickloop.midi_utils

logging.basicConfig(level=logging.INFO)


def on_error (action: str, event: tickloop.Event, exc: Exception) -> None:

	logging.warning(f"Skipped {action} of {event.payload}: {exc}")


def main () -> None:

	parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
	parser.add_argument("file",                           help="MIDI file to play")
	parser.add_argument("--bpm",    type=float, default=None, help="Override the tempo stored in the file")
	parser.add_argument("--render", type=str,   default=None, help="Write the rendered performance here instead of playing")
	args = parser.parse_args()

	song = tickloop.load_midi_file(args.file)
	tempo = tickloop.Tempo(args.bpm) if args.bpm else song.tempo

	if args.render:
		recorder = tickloop.RecordingSink()
		scheduler = tickloop.Scheduler(song.events, tempo=tempo, sink=recorder, render=True)
		recorder.clock = scheduler.elapsed
		scheduler.play()
		recorder.save(args.render, tempo, ppq=song.ticks_per_beat)
		return

	_, port = tickloop.midi_utils.select_output_device()

	if port is None:
		raise SystemExit(1)

	sink = tickloop.MidiOutputSink(port)
	scheduler = tickloop.Scheduler(song.events, tempo=tempo, sink=sink)
	scheduler.on_event("dispatch_error", on_error)

	try:
		asyncio.run(scheduler.run())
	except KeyboardInterrupt:
		pass
	finally:
		sink.panic()
		sink.close()


if __name__ == "__main__":
	main()
