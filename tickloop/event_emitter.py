import asyncio
import inspect
import logging
import typing


logger = logging.getLogger(__name__)

ListenerType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named lifecycle notifications for the scheduler.

	Listeners may be plain functions or coroutine functions. A listener that
	raises is logged and skipped so that one broken observer cannot stop the
	clock or starve the other listeners.
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[ListenerType]] = {}


	def on (self, event_name: str, listener: ListenerType) -> None:

		"""Register a listener for an event name."""

		self._listeners.setdefault(event_name, []).append(listener)

	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""Call plain listeners and await coroutine listeners concurrently."""

		pending: typing.List[typing.Awaitable[typing.Any]] = []

		for listener in list(self._listeners.get(event_name, [])):

			if inspect.iscoroutinefunction(listener):
				pending.append(listener(*args, **kwargs))
				continue

			try:
				listener(*args, **kwargs)
			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")

		if not pending:
			return

		results = await asyncio.gather(*pending, return_exceptions=True)

		for result in results:
			if isinstance(result, Exception):
				logger.error(f"Async listener for {event_name!r} failed: {result!r}")
