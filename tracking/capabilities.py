"""Host capabilities the capture layer depends on.

The collectors never touch a browser directly. The host hands them a
clock, a scheduler for timers, a key/value store and an event source;
production hosts wire real ones, replays and tests use the in-process
implementations defined here.
"""
import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from loguru import logger

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class Clock(Protocol):
    def now_ms(self) -> int: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class PersistentStore(Protocol):
    """Last-write-wins string key/value store (localStorage semantics)."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class EventSource(Protocol):
    def add_listener(self, event_type: str, listener: Listener, capture: bool = False) -> Unsubscribe: ...


class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class MemoryStore:
    """Dict-backed PersistentStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class EventBus:
    """Synchronous in-process EventSource.

    Listeners run in registration order on the caller's stack, capture-phase
    listeners before bubble-phase ones.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Tuple[bool, Listener]]] = {}

    def add_listener(self, event_type: str, listener: Listener, capture: bool = False) -> Unsubscribe:
        entry = (capture, listener)
        self._listeners.setdefault(event_type, []).append(entry)

        def unsubscribe() -> None:
            entries = self._listeners.get(event_type, [])
            if entry in entries:
                entries.remove(entry)

        return unsubscribe

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(entries) for entries in self._listeners.values())

    def dispatch(self, event_type: str, event: Any = None) -> None:
        entries = list(self._listeners.get(event_type, []))
        ordered = [listener for capture, listener in entries if capture]
        ordered += [listener for capture, listener in entries if not capture]
        for listener in ordered:
            listener(event)


class _ManualTimer:
    def __init__(self, interval_ms: Optional[int]):
        self.interval_ms = interval_ms
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-time Clock and Scheduler.

    Time only moves when ``advance`` is called; due timers then fire in
    deadline order with the clock set to each timer's deadline.
    """

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._queue: List[Tuple[int, int, _ManualTimer, Callable[[], None]]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(None)
        self._push(self._now + max(0, delay_ms), timer, callback)
        return timer

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> _ManualTimer:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        timer = _ManualTimer(interval_ms)
        self._push(self._now + interval_ms, timer, callback)
        return timer

    def pending(self) -> int:
        return sum(1 for _, _, timer, _ in self._queue if not timer.cancelled)

    def advance(self, ms: int) -> None:
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            deadline, _, timer, callback = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = deadline
            if timer.interval_ms is not None:
                self._push(deadline + timer.interval_ms, timer, callback)
            callback()
        self._now = target

    def _push(self, deadline: int, timer: _ManualTimer, callback: Callable[[], None]) -> None:
        heapq.heappush(self._queue, (deadline, next(self._seq), timer, callback))


class _RepeatingHandle:
    def __init__(self):
        self.current: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.current is not None:
            self.current.cancel()


class AsyncioScheduler:
    """Scheduler on top of an asyncio event loop (the running one by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay_ms / 1000, callback)

    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> _RepeatingHandle:
        handle = _RepeatingHandle()

        def tick() -> None:
            if handle.cancelled:
                return
            handle.current = self._loop.call_later(interval_ms / 1000, tick)
            callback()

        handle.current = self._loop.call_later(interval_ms / 1000, tick)
        return handle


class TrailingWindow:
    """Emit at most one value per window; the last value pushed wins.

    The first push after a quiet period opens a window of ``window_ms``;
    later pushes inside the window only replace the pending value. When
    the window closes the pending value is handed to ``emit``.
    """

    def __init__(self, scheduler: Scheduler, window_ms: int, emit: Callable[[Any], None]):
        self._scheduler = scheduler
        self._window_ms = window_ms
        self._emit = emit
        self._pending: Any = None
        self._timer: Optional[TimerHandle] = None

    def push(self, value: Any) -> None:
        self._pending = value
        if self._timer is None:
            self._timer = self._scheduler.call_later(self._window_ms, self._flush)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def _flush(self) -> None:
        value, self._pending, self._timer = self._pending, None, None
        self._emit(value)


def guarded(name: str, handler: Listener) -> Listener:
    """Wrap a DOM listener so a failure is logged instead of reaching the host."""

    def run(event: Any) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Capture handler '{name}' failed: {e}")

    return run
