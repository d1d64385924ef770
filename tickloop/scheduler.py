import asyncio
import dataclasses
import heapq
import inspect
import itertools
import logging
import time
import typing

import tickloop.constants.timing
import tickloop.event
import tickloop.event_emitter
import tickloop.sinks
import tickloop.tempo


logger = logging.getLogger(__name__)

ACTIVATE = 'activate'
DEACTIVATE = 'deactivate'
BAR = 'bar'
RESCHEDULE = 'reschedule'


@dataclasses.dataclass (order=True)
class DispatchEntry:

	"""
	One unit of work on the timeline, ordered by fire time then insertion order.

	``time`` is in seconds from the start of the run.
	"""

	time: float
	sequence: int
	kind: str = dataclasses.field(compare=False)
	event: typing.Optional[tickloop.event.Event] = dataclasses.field(compare=False, default=None)
	bar: int = dataclasses.field(compare=False, default=0)
	bar_start: float = dataclasses.field(compare=False, default=0.0)


class Scheduler:

	"""
	Dispatch beat-relative events to a sink in real time.

	Each event is activated at ``start + offset * ms_per_beat`` and deactivated
	at ``start + (offset + duration) * ms_per_beat``. With ``loop_beats`` set,
	the whole list repeats every ``loop_beats`` beats until stopped, each bar
	queued ``lookahead`` beats before it begins.

	All work lives on one heap and one clock task. Sync sink calls run on the
	clock task; coroutine sink calls get a task of their own. A failing sink
	call is logged and reported as a ``"dispatch_error"`` event without
	affecting any other dispatch.

	Example:
		```python
		sink = tickloop.sinks.MidiOutputSink(port)
		riff = tickloop.event.make_events([(0, 60, 0.25), (1, 63, 0.5)])

		scheduler = Scheduler(riff, tempo=120, sink=sink, loop_beats=2)
		scheduler.play(bars=8)
		```
	"""

	def __init__ (
		self,
		events: typing.Iterable[tickloop.event.EventRow],
		tempo: typing.Union[tickloop.tempo.Tempo, float],
		sink: tickloop.sinks.Sink,
		loop_beats: typing.Optional[float] = None,
		lookahead: float = tickloop.constants.timing.DEFAULT_LOOKAHEAD,
		spin_wait: bool = True,
		render: bool = False,
		jitter_log: typing.Optional[typing.List[float]] = None
	) -> None:

		"""Validate the configuration and prepare an idle scheduler.

		Parameters:
			events: Events, or rows accepted by ``tickloop.event.make_events``.
			tempo: A ``Tempo`` or a BPM number. Non-positive tempos raise ``ValueError``.
			sink: Receiver of ``activate(payload, amplitude)`` and ``deactivate(payload)``.
			loop_beats: Bar length in beats; the events repeat every bar when set.
			lookahead: Beats before a bar begins at which it is queued (capped at the bar length).
			spin_wait: When True, busy-wait the final millisecond before each dispatch
				for tighter timing at the cost of some CPU.
			render: When True, simulate time and dispatch as fast as possible.
			jitter_log: Optional list that receives the lateness (seconds) of every
				activate/deactivate dispatch.
		"""

		if not isinstance(sink, tickloop.sinks.Sink):
			raise ValueError("Sink must provide activate() and deactivate()")

		if loop_beats is not None and loop_beats <= 0:
			raise ValueError("Loop length must be positive")

		if lookahead < 0:
			raise ValueError("Lookahead cannot be negative")

		self.events: typing.Tuple[tickloop.event.Event, ...] = tuple(tickloop.event.make_events(events))
		self.tempo = tickloop.tempo.as_tempo(tempo)
		self.sink = sink
		self.loop_beats = loop_beats
		self.lookahead = min(lookahead, loop_beats) if loop_beats is not None else lookahead
		self.render_mode = render
		self.emitter = tickloop.event_emitter.EventEmitter()

		self._spin_wait = spin_wait
		self._spin_threshold = tickloop.constants.timing.SPIN_THRESHOLD
		self._jitter_log = jitter_log

		self.running = False
		self.task: typing.Optional[asyncio.Task] = None
		self.bar = -1
		self.activations = 0
		self.deactivations = 0
		self.failures = 0

		self._queue: typing.List[DispatchEntry] = []
		self._counter = itertools.count()
		self._bar_limit: typing.Optional[int] = None
		self._pending_tempo: typing.Optional[tickloop.tempo.Tempo] = None
		self._start_time: typing.Optional[float] = None
		self._sim_time = 0.0
		self._stop_event: typing.Optional[asyncio.Event] = None
		self._tasks: typing.Set[asyncio.Future] = set()

		if loop_beats is not None and tickloop.event.span(self.events) > loop_beats:
			logger.warning(f"Events extend past the {loop_beats}-beat loop and will overlap the next bar")


	def on_event (self, event_name: str, listener: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a listener for ``"start"``, ``"bar"``, ``"dispatch_error"``, ``"complete"`` or ``"stop"``.
		"""

		self.emitter.on(event_name, listener)


	def elapsed (self) -> float:

		"""Seconds since the current run started (simulated in render mode)."""

		if self.render_mode:
			return self._sim_time

		if self._start_time is None:
			return 0.0

		return time.perf_counter() - self._start_time


	def set_tempo (self, bpm: typing.Union[tickloop.tempo.Tempo, float]) -> None:

		"""
		Change the tempo.

		While idle the change is immediate. While a loop is playing it takes
		effect from the next bar boundary; during a single pass it applies from
		the next run. Invalid tempos raise ``ValueError`` straight away.
		"""

		tempo = tickloop.tempo.as_tempo(bpm)

		if not self.running:
			self.tempo = tempo
			logger.info(f"BPM set to {tempo.bpm:.2f}")
			return

		self._pending_tempo = tempo

		if self.loop_beats is not None:
			logger.info(f"BPM change to {tempo.bpm:.2f} queued for the next bar")
		else:
			logger.info(f"BPM change to {tempo.bpm:.2f} applies from the next run")


	def _apply_pending_tempo (self) -> None:

		if self._pending_tempo is None:
			return

		self.tempo = self._pending_tempo
		self._pending_tempo = None

		logger.info(f"BPM set to {self.tempo.bpm:.2f}")


	def _push (self, entry_time: float, kind: str, **fields: typing.Any) -> None:

		entry = DispatchEntry(time=entry_time, sequence=next(self._counter), kind=kind, **fields)
		heapq.heappush(self._queue, entry)


	def _queue_bar (self, bar: int, bar_start: float) -> None:

		"""Push one pass over the events starting at ``bar_start`` seconds."""

		seconds_per_beat = self.tempo.seconds_per_beat

		self._push(bar_start, BAR, bar=bar, bar_start=bar_start)

		for event in self.events:
			self._push(bar_start + event.offset * seconds_per_beat, ACTIVATE, event=event, bar=bar)
			self._push(bar_start + event.end * seconds_per_beat, DEACTIVATE, event=event, bar=bar)

		if self.loop_beats is None:
			return

		next_bar = bar + 1

		if self._bar_limit is not None and next_bar >= self._bar_limit:
			return

		next_start = bar_start + self.loop_beats * seconds_per_beat
		reschedule_time = next_start - self.lookahead * seconds_per_beat

		self._push(reschedule_time, RESCHEDULE, bar=next_bar, bar_start=next_start)

		logger.debug(f"Queued bar {bar} at {bar_start:.3f}s, queue size: {len(self._queue)}")


	async def start (self, bars: typing.Optional[int] = None) -> None:

		"""Start playback in a separate asyncio task.

		Parameters:
			bars: Number of loop iterations to play; ``None`` loops until stopped.
				Ignored when no loop length is set.
		"""

		if self.running:
			return

		if bars is not None and bars <= 0:
			raise ValueError("Bar limit must be positive")

		if self.render_mode and self.loop_beats is not None and bars is None:
			raise ValueError("Rendering a loop requires a bar limit - it would never finish")

		self._apply_pending_tempo()

		self._bar_limit = bars if self.loop_beats is not None else None
		self._queue = []
		self._counter = itertools.count()
		self._sim_time = 0.0
		self._start_time = None
		self.bar = -1
		self.activations = 0
		self.deactivations = 0
		self.failures = 0

		self._stop_event = asyncio.Event()
		self.running = True
		self.task = asyncio.create_task(self._run_loop())

		logger.info(f"Scheduler started ({len(self.events)} events at {self.tempo.bpm:.2f} BPM)")

		await self.emitter.emit_async("start")


	def request_stop (self) -> None:

		"""
		Prevent every not-yet-fired dispatch.

		Safe to call from sink callbacks, listeners and signal handlers. Notes
		that were already activated are not deactivated.
		"""

		if not self.running:
			return

		self.running = False

		if self._stop_event is not None:
			self._stop_event.set()


	async def stop (self) -> None:

		"""Stop playback and wait for the clock task and in-flight sink calls to finish."""

		self.request_stop()

		current = asyncio.current_task()

		if self.task is not None and self.task is not current:
			await self.task

		# Failure reports can spawn further tasks while we wait.
		while True:
			pending = [task for task in self._tasks if task is not current and not task.done()]

			if not pending:
				break

			await asyncio.gather(*pending, return_exceptions=True)


	async def run (self, bars: typing.Optional[int] = None) -> None:

		"""Start playback and wait for it to finish or be stopped."""

		await self.start(bars)

		try:
			if self.task:
				await self.task
		except asyncio.CancelledError:
			pass
		finally:
			await self.stop()


	def play (self, bars: typing.Optional[int] = None) -> None:

		"""
		Run the scheduler to completion.

		This call blocks until the schedule finishes, the bar limit is reached,
		or the program is interrupted (e.g. via Ctrl+C).
		"""

		try:
			asyncio.run(self.run(bars))

		except KeyboardInterrupt:
			pass


	async def _run_loop (self) -> None:

		"""Pop entries in time order, waiting for each one's fire time."""

		self._start_time = time.perf_counter()
		self._queue_bar(0, 0.0)

		try:

			while self.running and self._queue:

				entry = self._queue[0]

				if self.render_mode:
					self._sim_time = max(self._sim_time, entry.time)
				else:
					await self._wait_until(entry.time)

					if not self.running:
						break

				heapq.heappop(self._queue)

				if self._jitter_log is not None and entry.kind in (ACTIVATE, DEACTIVATE):
					self._jitter_log.append(self.elapsed() - entry.time)

				self._dispatch(entry)

				if self.render_mode:
					# Let sink tasks and stop requests run between entries.
					await asyncio.sleep(0)

			completed = self.running and not self._queue

		finally:
			self.running = False

		if completed:
			logger.info(f"Schedule complete ({self.activations} activations, {self.deactivations} deactivations).")
			await self.emitter.emit_async("complete")

		logger.info("Scheduler stopped")

		await self.emitter.emit_async("stop")


	async def _wait_until (self, target: float) -> None:

		"""Wait until ``target`` seconds after the start, returning early on a stop request."""

		assert self._stop_event is not None, "Stop event must exist while running"
		assert self._start_time is not None, "Start time must be set while running"

		while self.running:

			remaining = target - self.elapsed()

			if remaining <= 0:
				return

			if self._spin_wait and remaining <= self._spin_threshold:
				deadline = self._start_time + target
				while time.perf_counter() < deadline:
					pass
				return

			sleep_time = remaining - self._spin_threshold if self._spin_wait else remaining

			try:
				await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_time)
			except asyncio.TimeoutError:
				continue

			return


	def _dispatch (self, entry: DispatchEntry) -> None:

		"""Handle one entry. The stop flag is checked here, right before any sink call."""

		if not self.running:
			return

		if entry.kind == RESCHEDULE:
			self._apply_pending_tempo()
			self._queue_bar(entry.bar, entry.bar_start)
			return

		if entry.kind == BAR:
			self.bar = entry.bar
			self._spawn(self.emitter.emit_async("bar", entry.bar))
			return

		event = entry.event
		assert event is not None, "Note entries always carry an event"

		if entry.kind == ACTIVATE:
			self.activations += 1
			self._invoke(ACTIVATE, event, self.sink.activate, event.payload, tickloop.event.clamp_amplitude(event.amplitude))

		elif entry.kind == DEACTIVATE:
			self.deactivations += 1
			self._invoke(DEACTIVATE, event, self.sink.deactivate, event.payload)


	def _invoke (self, action: str, event: tickloop.event.Event, fn: typing.Callable[..., typing.Any], *args: typing.Any) -> None:

		"""Call the sink in isolation from every other dispatch."""

		try:
			result = fn(*args)
		except Exception as exc:
			self._report_failure(action, event, exc)
			return

		if inspect.isawaitable(result):
			self._spawn(self._await_sink(action, event, result))


	async def _await_sink (self, action: str, event: tickloop.event.Event, result: typing.Awaitable[typing.Any]) -> None:

		try:
			await result
		except Exception as exc:
			self._report_failure(action, event, exc)


	def _report_failure (self, action: str, event: tickloop.event.Event, exc: Exception) -> None:

		self.failures += 1

		logger.error(f"Sink {action} failed for {event.payload!r}: {exc!r}", exc_info=exc)

		self._spawn(self.emitter.emit_async("dispatch_error", action, event, exc))


	def _spawn (self, awaitable: typing.Awaitable[typing.Any]) -> None:

		"""Run work in the background, keeping a reference until it finishes."""

		task = asyncio.ensure_future(awaitable)
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
