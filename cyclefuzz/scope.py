from __future__ import annotations

import asyncio
from typing import Optional


class Scope:
    def __init__(self, parent: Optional[Scope] = None, timeout: Optional[float] = None):
        """
        Cancellable execution scope.

        Cancelling a scope cancels all of its children. Cancellation never propagates upwards.
        Must be created while an event loop is running.

        Arguments:
        ---------
        parent:   Scope this scope is nested in.
        timeout:  Number of seconds after which the scope cancels itself.
        """

        self._parent = parent
        self._children: list[Scope] = []
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None

        if parent is not None:
            if parent.cancelled:
                self._event.set()
                return
            parent._children.append(self)  # noqa: SLF001

        if timeout is not None:
            self._timer = asyncio.get_running_loop().call_later(timeout, self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self, timeout: Optional[float] = None) -> Scope:
        return Scope(parent=self, timeout=timeout)

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        children, self._children = self._children, []
        for child in children:
            child.cancel()

        if self._parent is not None and self in self._parent._children:  # noqa: SLF001
            self._parent._children.remove(self)  # noqa: SLF001

    async def wait(self) -> None:
        await self._event.wait()
