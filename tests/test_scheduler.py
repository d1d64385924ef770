import asyncio
import time
import typing

import pytest

import tickloop.event
import tickloop.scheduler
import tickloop.sinks


def _rendered (events: typing.Iterable[typing.Any], bpm: float = 120, **kwargs: typing.Any) -> typing.Tuple[tickloop.scheduler.Scheduler, tickloop.sinks.RecordingSink]:

	"""Build a render-mode scheduler whose recording sink is stamped with simulated time."""

	sink = tickloop.sinks.RecordingSink()
	scheduler = tickloop.scheduler.Scheduler(events, tempo=bpm, sink=sink, render=True, **kwargs)
	sink.clock = scheduler.elapsed

	return scheduler, sink


def _calls (sink: tickloop.sinks.RecordingSink) -> typing.List[typing.Tuple[str, typing.Any, float]]:

	return [(record.action, record.payload, record.time) for record in sink.records]


# ---------------------------------------------------------------------------
# Fire times
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fire_times_at_120_bpm () -> None:

	"""500 ms per beat: a quarter-beat note lasts 125 ms, a note on beat 1 starts at 500 ms."""

	scheduler, sink = _rendered([(0, "a", 0.25), (1.0, "b", 0.5)], bpm=120)

	await scheduler.run()

	calls = _calls(sink)

	assert [(action, payload) for action, payload, _ in calls] == [
		("activate", "a"),
		("deactivate", "a"),
		("activate", "b"),
		("deactivate", "b"),
	]
	assert [t * 1000 for _, _, t in calls] == pytest.approx([0, 125, 500, 750])


@pytest.mark.asyncio
async def test_every_event_activates_and_deactivates_once () -> None:

	"""N events produce N activations and N deactivations, each pair duration * ms_per_beat apart."""

	rows = [(i * 0.37, f"note-{i}", 0.1 + (i % 5) * 0.3) for i in range(40)]
	scheduler, sink = _rendered(rows, bpm=97)

	await scheduler.run()

	activations = {record.payload: record.time for record in sink.activations()}
	deactivations = {record.payload: record.time for record in sink.deactivations()}

	assert len(sink.activations()) == 40
	assert len(sink.deactivations()) == 40
	assert scheduler.activations == 40
	assert scheduler.deactivations == 40

	ms_per_beat = 60000 / 97

	for offset, payload, duration in rows:
		assert activations[payload] * 1000 == pytest.approx(offset * ms_per_beat)
		assert (deactivations[payload] - activations[payload]) * 1000 == pytest.approx(duration * ms_per_beat)


@pytest.mark.asyncio
async def test_simultaneous_events_all_fire () -> None:

	scheduler, sink = _rendered([(0, 60, 1), (0, 64, 1), (0, 67, 1)])

	await scheduler.run()

	assert sorted(record.payload for record in sink.activations()) == [60, 64, 67]
	assert all(record.time == 0 for record in sink.activations())


@pytest.mark.asyncio
async def test_amplitude_reaches_sink_clamped () -> None:

	scheduler, sink = _rendered([(0, "loud", 1, 4.0), (1, "quiet", 1, -2.0), (2, "mid", 1, 0.4)])

	await scheduler.run()

	assert [(record.payload, record.amplitude) for record in sink.activations()] == [
		("loud", 1.0),
		("quiet", 0.0),
		("mid", 0.4),
	]


@pytest.mark.asyncio
async def test_malformed_duration_still_plays () -> None:

	scheduler, sink = _rendered([{"offset": 0, "payload": "x", "duration": "n/a"}], bpm=60)

	await scheduler.run()

	off = sink.deactivations()[0]

	assert off.time == pytest.approx(tickloop.event.DEFAULT_DURATION)


@pytest.mark.asyncio
async def test_empty_schedule_completes () -> None:

	scheduler, sink = _rendered([])
	order: typing.List[str] = []

	scheduler.on_event("complete", lambda: order.append("complete"))
	scheduler.on_event("stop", lambda: order.append("stop"))

	await scheduler.run()

	assert sink.records == []
	assert order == ["complete", "stop"]


# ---------------------------------------------------------------------------
# Looping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_loop_repeats_every_bar () -> None:

	"""With a 2-beat loop at 120 BPM the activation sequence recurs every second."""

	scheduler, sink = _rendered([(0, "kick", 0.5), (1, "snare", 0.5)], bpm=120, loop_beats=2)
	bars: typing.List[int] = []

	scheduler.on_event("bar", bars.append)

	await scheduler.run(bars=3)

	activations = [(record.payload, record.time) for record in sink.activations()]

	assert [payload for payload, _ in activations] == ["kick", "snare"] * 3
	assert [t for _, t in activations] == pytest.approx([0.0, 0.5, 1.0, 1.5, 2.0, 2.5])
	assert len(sink.deactivations()) == 6
	assert bars == [0, 1, 2]
	assert scheduler.bar == 2


@pytest.mark.asyncio
async def test_loop_with_zero_lookahead () -> None:

	scheduler, sink = _rendered([(0, "a", 2)], bpm=60, loop_beats=2, lookahead=0)

	await scheduler.run(bars=2)

	# The note ending on the bar line is released before the next bar starts it again.
	assert [(action, t) for action, _, t in _calls(sink)] == [
		("activate", 0.0),
		("deactivate", 2.0),
		("activate", 2.0),
		("deactivate", 4.0),
	]


@pytest.mark.asyncio
async def test_rendering_an_endless_loop_is_rejected () -> None:

	scheduler, _ = _rendered([(0, "a", 1)], loop_beats=4)

	with pytest.raises(ValueError, match="bar limit"):
		await scheduler.run()


@pytest.mark.asyncio
async def test_tempo_change_applies_from_next_bar () -> None:

	"""A tempo change mid-loop leaves the current bar alone and retimes the following ones."""

	sink = tickloop.sinks.RecordingSink()
	scheduler = tickloop.scheduler.Scheduler([(0, "x", 0.5)], tempo=60, sink=sink, loop_beats=1, lookahead=0.5, render=True)
	sink.clock = scheduler.elapsed

	def activate (payload: typing.Any, amplitude: float) -> None:
		sink.activate(payload, amplitude)
		if len(sink.activations()) == 1:
			scheduler.set_tempo(120)

	scheduler.sink = tickloop.sinks.CallbackSink(activate, sink.deactivate)

	await scheduler.run(bars=3)

	# Bar 0 at 60 BPM (1 s), then 0.5 s bars at 120 BPM.
	assert [record.time for record in sink.activations()] == pytest.approx([0.0, 1.0, 1.5])
	assert [record.time for record in sink.deactivations()] == pytest.approx([0.5, 1.25, 1.75])
	assert scheduler.tempo.bpm == 120


def test_set_tempo_while_idle_is_immediate () -> None:

	scheduler, _ = _rendered([(0, "a")], bpm=100)

	scheduler.set_tempo(140)

	assert scheduler.tempo.bpm == 140

	with pytest.raises(ValueError):
		scheduler.set_tempo(0)

	assert scheduler.tempo.bpm == 140


# ---------------------------------------------------------------------------
# Stopping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stop_prevents_later_dispatch () -> None:

	"""Once stop is requested nothing else fires, including the pending note-off."""

	activated: typing.List[str] = []
	deactivated: typing.List[str] = []
	scheduler: typing.Optional[tickloop.scheduler.Scheduler] = None

	def activate (payload: str, amplitude: float) -> None:
		activated.append(payload)
		if payload == "b":
			assert scheduler is not None
			scheduler.request_stop()

	sink = tickloop.sinks.CallbackSink(activate, deactivated.append)
	scheduler = tickloop.scheduler.Scheduler([(0, "a", 0.25), (1, "b", 1), (2, "c", 1)], tempo=120, sink=sink, render=True)

	await scheduler.run()

	assert activated == ["a", "b"]
	assert deactivated == ["a"]
	assert scheduler.running is False


@pytest.mark.asyncio
async def test_stop_in_real_time_skips_future_events () -> None:

	"""Stopping before an event's fire time means it never activates or deactivates."""

	sink = tickloop.sinks.RecordingSink()
	# 600 BPM = 100 ms per beat; "late" would fire at 500 ms.
	scheduler = tickloop.scheduler.Scheduler([(0, "early", 0.25), (5, "late", 0.25)], tempo=600, sink=sink)

	await scheduler.start()
	await asyncio.sleep(0.15)

	stop_started = time.perf_counter()
	await scheduler.stop()
	stop_took = time.perf_counter() - stop_started

	await asyncio.sleep(0.5)

	assert [record.payload for record in sink.activations()] == ["early"]
	assert [record.payload for record in sink.deactivations()] == ["early"]
	assert stop_took < 0.2


@pytest.mark.asyncio
async def test_stop_ends_an_endless_loop () -> None:

	sink = tickloop.sinks.RecordingSink()
	# 600 BPM: 100 ms bars of one beat each.
	scheduler = tickloop.scheduler.Scheduler([(0, "tick", 0.25)], tempo=600, sink=sink, loop_beats=1)
	sink.clock = scheduler.elapsed

	await scheduler.start()
	await asyncio.sleep(0.35)
	await scheduler.stop()

	times = [record.time for record in sink.activations()]

	assert len(times) >= 3
	for previous, current in zip(times, times[1:]):
		assert current - previous == pytest.approx(0.1, abs=0.04)

	count = len(times)
	await asyncio.sleep(0.25)
	assert len(sink.activations()) == count


# ---------------------------------------------------------------------------
# Real-time timing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_real_time_fire_times_within_tolerance () -> None:

	sink = tickloop.sinks.RecordingSink()
	# 240 BPM = 250 ms per beat.
	scheduler = tickloop.scheduler.Scheduler([(0, "a", 0.25), (1, "b", 0.5)], tempo=240, sink=sink)
	sink.clock = scheduler.elapsed

	await scheduler.run()

	times = [t for _, _, t in _calls(sink)]

	assert times == pytest.approx([0.0, 0.0625, 0.25, 0.375], abs=0.03)


@pytest.mark.asyncio
async def test_jitter_log_records_each_dispatch () -> None:

	jitter: typing.List[float] = []
	scheduler, _ = _rendered([(0, "a", 0.5), (1, "b", 0.5)], jitter_log=jitter)

	await scheduler.run()

	assert jitter == [0.0, 0.0, 0.0, 0.0]


# ---------------------------------------------------------------------------
# Failure isolation and async sinks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failing_sink_call_does_not_stop_other_events () -> None:

	played: typing.List[str] = []
	errors: typing.List[typing.Tuple[str, typing.Any, Exception]] = []

	def activate (payload: str, amplitude: float) -> None:
		if payload == "bad":
			raise RuntimeError("synth exploded")
		played.append(payload)

	sink = tickloop.sinks.CallbackSink(activate, lambda payload: None)
	scheduler = tickloop.scheduler.Scheduler([(0, "a", 0.5), (0.5, "bad", 0.5), (1, "c", 0.5)], tempo=120, sink=sink, render=True)

	scheduler.on_event("dispatch_error", lambda action, event, exc: errors.append((action, event.payload, exc)))

	await scheduler.run()

	assert played == ["a", "c"]
	assert scheduler.failures == 1
	assert scheduler.deactivations == 3
	assert len(errors) == 1
	assert errors[0][0] == "activate"
	assert errors[0][1] == "bad"
	assert isinstance(errors[0][2], RuntimeError)


@pytest.mark.asyncio
async def test_failing_async_sink_call_is_isolated () -> None:

	released: typing.List[str] = []

	async def activate (payload: str, amplitude: float) -> None:
		await asyncio.sleep(0)

	async def deactivate (payload: str) -> None:
		await asyncio.sleep(0)
		if payload == "b":
			raise ValueError("no such voice")
		released.append(payload)

	scheduler = tickloop.scheduler.Scheduler(
		[(0, "a", 0.5), (0, "b", 0.5), (0, "c", 0.5)],
		tempo = 120,
		sink = tickloop.sinks.CallbackSink(activate, deactivate),
		render = True
	)

	await scheduler.run()

	assert sorted(released) == ["a", "c"]
	assert scheduler.failures == 1


@pytest.mark.asyncio
async def test_async_sink_calls_are_awaited () -> None:

	calls: typing.List[typing.Tuple[str, typing.Any]] = []

	class AsyncSink:

		async def activate (self, payload: typing.Any, amplitude: float) -> None:
			await asyncio.sleep(0.01)
			calls.append(("on", payload))

		async def deactivate (self, payload: typing.Any) -> None:
			await asyncio.sleep(0.01)
			calls.append(("off", payload))

	scheduler = tickloop.scheduler.Scheduler([(0, 1, 0.25), (0.5, 2, 0.25)], tempo=120, sink=AsyncSink(), render=True)

	await scheduler.run()

	assert sorted(calls) == [("off", 1), ("off", 2), ("on", 1), ("on", 2)]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def test_rejects_object_without_sink_methods () -> None:

	with pytest.raises(ValueError, match="activate"):
		tickloop.scheduler.Scheduler([], tempo=120, sink=object())  # type: ignore[arg-type]


@pytest.mark.parametrize("bpm", [0, -30])
def test_rejects_non_positive_tempo (bpm: float) -> None:

	with pytest.raises(ValueError, match="BPM"):
		tickloop.scheduler.Scheduler([], tempo=bpm, sink=tickloop.sinks.RecordingSink())


def test_rejects_bad_loop_and_lookahead () -> None:

	sink = tickloop.sinks.RecordingSink()

	with pytest.raises(ValueError, match="Loop"):
		tickloop.scheduler.Scheduler([], tempo=120, sink=sink, loop_beats=0)

	with pytest.raises(ValueError, match="Lookahead"):
		tickloop.scheduler.Scheduler([], tempo=120, sink=sink, loop_beats=4, lookahead=-1)


def test_lookahead_is_capped_at_loop_length () -> None:

	scheduler = tickloop.scheduler.Scheduler([], tempo=120, sink=tickloop.sinks.RecordingSink(), loop_beats=2, lookahead=8)

	assert scheduler.lookahead == 2


@pytest.mark.asyncio
async def test_rejects_non_positive_bar_limit () -> None:

	scheduler, _ = _rendered([(0, "a")], loop_beats=4)

	with pytest.raises(ValueError, match="Bar limit"):
		await scheduler.start(bars=0)


def test_play_runs_to_completion () -> None:

	"""The blocking play() wrapper runs its own event loop."""

	scheduler, sink = _rendered([(0, 60, 1), (1, 62, 1)], loop_beats=2)
	lifecycle: typing.List[str] = []

	scheduler.on_event("start", lambda: lifecycle.append("start"))
	scheduler.on_event("complete", lambda: lifecycle.append("complete"))
	scheduler.on_event("stop", lambda: lifecycle.append("stop"))

	scheduler.play(bars=2)

	assert len(sink.activations()) == 4
	assert lifecycle == ["start", "complete", "stop"]
	assert scheduler.running is False
