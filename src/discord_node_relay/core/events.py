"""
Listener registration and fan-out for node and session events.

Components that broadcast named events (the registry, playback sessions)
inherit from EventEmitter. Listeners are plain callables or coroutine
functions; coroutine listeners are scheduled on the running loop so the
transport loop never awaits application code.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Named event fan-out with explicit listener bookkeeping."""

    def __init__(self) -> None:
        # event name -> [(callback, once)]
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = defaultdict(list)
        self._pending_tasks: "set[asyncio.Task[Any]]" = set()

    def on(self, event: str, callback: Listener) -> Listener:
        """Register a listener for every emission of an event."""
        self._listeners[event].append((callback, False))
        return callback

    def once(self, event: str, callback: Listener) -> Listener:
        """Register a listener that is removed after its first call."""
        self._listeners[event].append((callback, True))
        return callback

    def off(self, event: str, callback: Listener) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for index, (registered, _) in enumerate(listeners):
            if registered == callback:
                del listeners[index]
                return True
        return False

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        """Detach listeners for one event, or for all events."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener registered for an event.

        Args:
            event: Event name
            *args: Positional arguments passed to each listener

        Returns:
            True if at least one listener was called
        """
        listeners = self._listeners.get(event)
        if not listeners:
            return False

        snapshot = list(listeners)
        listeners[:] = [entry for entry in listeners if not entry[1]]

        for callback, _ in snapshot:
            try:
                result = callback(*args)
            except Exception:
                logger.exception(f"Listener {callback!r} for '{event}' raised")
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._pending_tasks.add(task)
                task.add_done_callback(self._listener_task_done)

        return True

    def _listener_task_done(self, task: "asyncio.Task[Any]") -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async listener raised", exc_info=error)

    async def wait_for(self, event: str, timeout: Optional[float] = None) -> Tuple[Any, ...]:
        """
        Wait for the next emission of an event.

        Returns:
            The positional arguments of that emission

        Raises:
            asyncio.TimeoutError: If the event does not fire in time
        """
        future: "asyncio.Future[Tuple[Any, ...]]" = asyncio.get_running_loop().create_future()

        def _resolve(*args: Any) -> None:
            if not future.done():
                future.set_result(args)

        self.once(event, _resolve)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self.off(event, _resolve)
