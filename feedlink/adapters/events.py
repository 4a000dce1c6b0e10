"""In-process notification hub with one-shot observers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class _Registration:
    __slots__ = ("callback", "once")

    def __init__(self, callback: Listener, once: bool) -> None:
        self.callback = callback
        self.once = once


class EventHub:
    """Named notifications delivered synchronously on the event-loop thread."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[_Registration]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> None:
        self._listeners[event].append(_Registration(callback, once=False))

    def once(self, event: str, callback: Listener) -> None:
        self._listeners[event].append(_Registration(callback, once=True))

    def off(self, event: str, callback: Listener) -> None:
        registrations = self._listeners.get(event)
        if not registrations:
            return
        for index, registration in enumerate(registrations):
            if registration.callback is callback:
                del registrations[index]
                break
        if not registrations:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        registrations = list(self._listeners.get(event, ()))
        if not registrations:
            return
        # one-shot 监听在调用前移除，回调里重新注册不会被本次 emit 触发
        remaining = [registration for registration in self._listeners[event] if not registration.once]
        if remaining:
            self._listeners[event] = remaining
        else:
            self._listeners.pop(event, None)
        for registration in registrations:
            try:
                registration.callback(*args)
            except Exception:
                logger.exception(f"listener for {event!r} failed")

    async def wait_for(self, event: str) -> Tuple[Any, ...]:
        """Suspend until ``event`` fires once; returns its arguments.

        Exactly one one-shot observer is registered per wait and it is removed
        on resumption or cancellation.
        """

        future: asyncio.Future[Tuple[Any, ...]] = asyncio.get_running_loop().create_future()

        def _resolve(*args: Any) -> None:
            if not future.done():
                future.set_result(args)

        self.once(event, _resolve)
        try:
            return await future
        finally:
            self.off(event, _resolve)


__all__ = ["EventHub", "Listener"]
