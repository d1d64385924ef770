"""Play a MIDI file through a MIDI output, or render its schedule to a new file.

Usage:
    python -m tickloop FILE.mid [--config PATH] [--bpm BPM] [--loop BEATS]
                                [--bars N] [--device NAME] [--channel N]
                                [--render OUT.mid] [--no-spin-wait]
                                [--log-level LEVEL]
"""

import argparse
import asyncio
import logging
import signal
import sys
import typing

import tickloop.config
import tickloop.midi_file
import tickloop.midi_utils
import tickloop.scheduler
import tickloop.sinks
import tickloop.tempo


logger = logging.getLogger(__name__)


def build_parser () -> argparse.ArgumentParser:

	parser = argparse.ArgumentParser(prog="tickloop", description="Play a MIDI file on a tempo-driven event scheduler.")

	parser.add_argument("file", help="Standard MIDI File to play")
	parser.add_argument("--config", default=tickloop.config.DEFAULT_CONFIG_PATH, help="YAML config file (default: %(default)s)")
	parser.add_argument("--bpm", type=float, help="Tempo override in beats per minute")
	parser.add_argument("--loop", type=float, dest="loop_beats", metavar="BEATS", help="Loop the first BEATS beats")
	parser.add_argument("--bars", type=int, help="Stop after N loop iterations")
	parser.add_argument("--device", dest="output_device", help="MIDI output device name")
	parser.add_argument("--channel", type=int, help="MIDI channel for bare note payloads (0-15)")
	parser.add_argument("--render", metavar="OUT", help="Write the scheduled output to a MIDI file instead of playing")
	parser.add_argument("--no-spin-wait", action="store_true", help="Use plain asyncio sleeps (lower CPU, more jitter)")
	parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")

	return parser


def merge_arguments (config: tickloop.config.Config, args: argparse.Namespace) -> tickloop.config.Config:

	"""Apply command-line flags on top of the file configuration."""

	for name in ("bpm", "loop_beats", "bars", "output_device", "channel", "log_level"):
		value = getattr(args, name, None)
		if value is not None:
			setattr(config, name, value)

	if args.no_spin_wait:
		config.spin_wait = False

	return config.validate()


def _loop_window (song: tickloop.midi_file.Song, loop_beats: typing.Optional[float]) -> typing.List[typing.Any]:

	if loop_beats is None:
		return list(song.events)

	events = [event for event in song.events if event.offset < loop_beats]

	dropped = len(song.events) - len(events)

	if dropped:
		logger.info(f"Looping the first {loop_beats} beats - {dropped} later note(s) left out")

	return events


async def run_until_stopped (scheduler: tickloop.scheduler.Scheduler, bars: typing.Optional[int]) -> None:

	"""
	Run the scheduler until it completes or a stop signal is received.
	"""

	logger.info("Playing. Press Ctrl+C to stop.")

	await scheduler.start(bars)

	loop = asyncio.get_running_loop()

	for sig in (signal.SIGINT, signal.SIGTERM):
		loop.add_signal_handler(sig, scheduler.request_stop)

	try:
		if scheduler.task is not None:
			await scheduler.task
	finally:
		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.remove_signal_handler(sig)

		await scheduler.stop()


def render (song: tickloop.midi_file.Song, config: tickloop.config.Config, tempo: tickloop.tempo.Tempo, path: str) -> int:

	"""Simulate playback and save what the sink received."""

	if config.loop_beats is not None and config.bars is None:
		logger.error("Rendering a loop needs --bars (or sequencer.bars in the config)")
		return 2

	sink = tickloop.sinks.RecordingSink()

	scheduler = tickloop.scheduler.Scheduler(
		events = _loop_window(song, config.loop_beats),
		tempo = tempo,
		sink = sink,
		loop_beats = config.loop_beats,
		lookahead = config.lookahead,
		render = True
	)

	sink.clock = scheduler.elapsed

	scheduler.play(bars=config.bars)
	sink.save(path, tempo, ppq=song.ticks_per_beat, default_channel=config.channel)

	return 0


def play (song: tickloop.midi_file.Song, config: tickloop.config.Config, tempo: tickloop.tempo.Tempo) -> int:

	"""Play the song in real time on a MIDI output port."""

	_, port = tickloop.midi_utils.select_output_device(config.output_device)

	if port is None:
		return 1

	sink = tickloop.sinks.MidiOutputSink(port, channel=config.channel)

	scheduler = tickloop.scheduler.Scheduler(
		events = _loop_window(song, config.loop_beats),
		tempo = tempo,
		sink = sink,
		loop_beats = config.loop_beats,
		lookahead = config.lookahead,
		spin_wait = config.spin_wait
	)

	try:
		asyncio.run(run_until_stopped(scheduler, config.bars))
	except KeyboardInterrupt:
		pass
	finally:
		sink.panic()
		sink.close()

	return 0


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Main entry point for the tickloop player.
	"""

	args = build_parser().parse_args(argv)

	logging.basicConfig(level=getattr(logging, (args.log_level or "INFO").upper(), logging.INFO))

	try:
		config = merge_arguments(tickloop.config.load_config(args.config), args)
	except ValueError as e:
		logger.error(f"Invalid configuration: {e}")
		return 2

	logging.getLogger().setLevel(config.log_level)

	try:
		song = tickloop.midi_file.load_midi_file(args.file)
	except (OSError, EOFError, ValueError) as e:
		logger.error(f"Could not read {args.file}: {e}")
		return 1

	logger.info(f"{args.file}: {len(song.events)} notes over {song.length_beats:g} beats ({song.bars} bar(s) of {song.beats_per_bar:g})")

	tempo = tickloop.tempo.Tempo(config.bpm) if config.bpm is not None else song.tempo

	if args.render:
		return render(song, config, tempo, args.render)

	return play(song, config, tempo)


if __name__ == "__main__":
	sys.exit(main())
