"""Minimal async event fan-out with per-listener isolation."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from .errors import HandlerError

log = logging.getLogger(__name__)

ERROR = "error"


class EventEmitter:
    def __init__(self):
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._once: set[tuple[str, int]] = set()

    def on(self, event: str, listener: Callable[..., Any] | None = None):
        """Register ``listener`` for ``event``. Works as a decorator when called without one."""
        if listener is None:
            def decorator(fn):
                self.on(event, fn)
                return fn
            return decorator
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Callable[..., Any]):
        self.on(event, listener)
        self._once.add((event, id(listener)))
        return listener

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
        self._once.discard((event, id(listener)))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def wait_for(self, event: str) -> tuple:
        """Wait for the next ``event`` and return its arguments."""
        future = asyncio.get_running_loop().create_future()

        def resolve(*args):
            if not future.done():
                future.set_result(args)

        self.once(event, resolve)
        try:
            return await future
        finally:
            self.off(event, resolve)

    async def emit(self, event: str, *args: Any) -> None:
        """Call every listener of ``event`` in registration order.

        A raising listener never stops the others: its exception is re-emitted
        as ``error`` wrapped in ``HandlerError``. An ``error`` with nobody
        listening is raised to the caller.
        """
        listeners = list(self._listeners.get(event, []))
        if event == ERROR and not listeners:
            error = args[0] if args else None
            if isinstance(error, BaseException):
                raise error
            raise HandlerError(ERROR)

        for listener in listeners:
            if (event, id(listener)) in self._once:
                self.off(event, listener)
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                if event == ERROR:
                    log.exception("Error listener %r raised", listener)
                    continue
                wrapped = HandlerError(event)
                wrapped.__cause__ = exc
                await self.emit(ERROR, wrapped)
