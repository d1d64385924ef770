"""Dispatch jitter benchmark.

Plays a dense looping bar through a silent sink and measures how late each
activate/deactivate call lands relative to its ideal time.

Usage:
    python benchmarks/dispatch_jitter.py [--bpm BPM] [--bars N] [--steps N]
                                         [--no-spin-wait] [--compare]

Options:
    --bpm BPM           Tempo in BPM (default: 120)
    --bars N            Number of bars to measure (default: 16)
    --steps N           Evenly spaced notes per 4-beat bar (default: 16)
    --no-spin-wait      Disable hybrid sleep+spin (use pure asyncio.sleep)
    --compare           Run both modes and print a side-by-side comparison
"""

import argparse
import logging
import statistics
import typing

# Suppress scheduler logging during benchmark - we want clean output.
logging.basicConfig(level=logging.ERROR)

import tickloop.scheduler
import tickloop.sinks

BEATS_PER_BAR = 4


def _run_benchmark (bpm: float, bars: int, steps: int, spin_wait: bool) -> typing.List[float]:

	"""Loop *bars* bars of *steps* notes and return per-dispatch lateness (seconds)."""

	jitter_log: typing.List[float] = []
	step = BEATS_PER_BAR / steps

	events = [(i * step, 60 + i % 12, step / 2) for i in range(steps)]
	sink = tickloop.sinks.CallbackSink(lambda payload, amplitude: None, lambda payload: None)

	scheduler = tickloop.scheduler.Scheduler(
		events,
		tempo = bpm,
		sink = sink,
		loop_beats = BEATS_PER_BAR,
		spin_wait = spin_wait,
		jitter_log = jitter_log
	)

	scheduler.play(bars=bars)

	return jitter_log


def _print_report (
	jitter: typing.List[float],
	bpm: float,
	bars: int,
	spin_wait: bool,
	label: str = "",
) -> None:

	if not jitter:
		print("No jitter data collected.")
		return

	ms = [j * 1000 for j in jitter]

	mean_ms   = statistics.mean(ms)
	median_ms = statistics.median(ms)
	stdev_ms  = statistics.stdev(ms) if len(ms) > 1 else 0.0
	p95_ms    = sorted(ms)[int(len(ms) * 0.95)]
	p99_ms    = sorted(ms)[int(len(ms) * 0.99)]
	max_ms    = max(ms)

	# Lateness never feeds into later dispatch times, so this should stay near zero.
	drift_ms  = ms[-1] - ms[0] if len(ms) > 1 else 0.0

	mode = "spin-wait ON" if spin_wait else "spin-wait OFF"
	header = f"  {label}  " if label else ""

	print(f"\nDispatch Jitter Benchmark{header}: {bars} bars at {bpm:.0f} BPM ({mode})")
	print(f"{'-' * 62}")
	print(f"  Dispatches      : {len(ms)}")
	print(f"  Beat length     : {60000.0 / bpm:.3f} ms")
	print(f"{'-' * 62}")
	print(f"  Mean lateness   : {mean_ms:>8.3f} ms")
	print(f"  Median lateness : {median_ms:>8.3f} ms")
	print(f"  Std deviation   : {stdev_ms:>8.3f} ms")
	print(f"  P95 lateness    : {p95_ms:>8.3f} ms")
	print(f"  P99 lateness    : {p99_ms:>8.3f} ms")
	print(f"  Max lateness    : {max_ms:>8.3f} ms")
	print(f"  Drift           : {drift_ms:>+8.3f} ms  (non-accumulating)")
	print(f"{'-' * 62}")

	if mean_ms < 0.1:
		rating = "Excellent  (sub-100 us)"
	elif mean_ms < 0.5:
		rating = "Very good  (sub-500 us, well below human perception)"
	elif mean_ms < 2.0:
		rating = "Good       (< 2 ms, at or below human perception threshold)"
	elif mean_ms < 5.0:
		rating = "Fair       (2-5 ms, may affect tight sync with hardware)"
	else:
		rating = "Poor       (> 5 ms, noticeable timing issues likely)"

	print(f"  Rating          : {rating}")
	print()


def main () -> None:

	parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
	parser.add_argument("--bpm",          type=float, default=120, help="Tempo in BPM (default: 120)")
	parser.add_argument("--bars",         type=int,   default=16,  help="Bars to measure (default: 16)")
	parser.add_argument("--steps",        type=int,   default=16,  help="Notes per bar (default: 16)")
	parser.add_argument("--no-spin-wait", action="store_true",     help="Disable spin-wait (use pure asyncio.sleep)")
	parser.add_argument("--compare",      action="store_true",     help="Run both modes and compare")
	args = parser.parse_args()

	if args.compare:
		print("\nRunning with spin-wait ON ...")
		spin_jitter = _run_benchmark(args.bpm, args.bars, args.steps, spin_wait=True)
		_print_report(spin_jitter, args.bpm, args.bars, spin_wait=True, label="[spin-wait ON]")

		print("Running with spin-wait OFF ...")
		pure_jitter = _run_benchmark(args.bpm, args.bars, args.steps, spin_wait=False)
		_print_report(pure_jitter, args.bpm, args.bars, spin_wait=False, label="[spin-wait OFF]")

	else:
		spin = not args.no_spin_wait
		jitter = _run_benchmark(args.bpm, args.bars, args.steps, spin_wait=spin)
		_print_report(jitter, args.bpm, args.bars, spin_wait=spin)


if __name__ == "__main__":
	main()
