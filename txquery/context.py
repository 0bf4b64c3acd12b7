"""Cancellation contexts passed through to the database driver.

A :class:`CancellationContext` carries an optional deadline and an explicit
cancellation flag.  Statements hand it to the driver adapters, which check it
before every call and register the driver's interrupt hook for the duration of
the call so that :meth:`CancellationContext.cancel` invoked from another
thread aborts the in-flight operation.  A context with a deadline arms a
timer for each guarded call that expires the context, and so interrupts the
call, once the deadline passes.

There is no implicit default timeout: :meth:`CancellationContext.background`
never expires.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from .exceptions import DeadlineExceeded, OperationCancelled

__all__ = ["CancellationContext"]

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


def _noop() -> None:
    return None


class CancellationContext:
    """Cancellation signal with an optional monotonic deadline."""

    def __init__(
        self,
        *,
        deadline: float | None = None,
        parent: CancellationContext | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        self._parent = parent
        self._clock = clock
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._expired = False
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._tokens = itertools.count()

    @classmethod
    def background(cls) -> CancellationContext:
        """Return a context that is never cancelled and has no deadline."""

        return cls()

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        *,
        parent: CancellationContext | None = None,
        clock: Clock = time.monotonic,
    ) -> CancellationContext:
        """Return a context expiring ``seconds`` from now."""

        if seconds < 0:
            raise ValueError("timeout must be non-negative")
        return cls(deadline=clock() + float(seconds), parent=parent, clock=clock)

    # ------------------------------------------------------------------
    # State inspection
    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self.error() is not None

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when unbounded."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def error(self) -> OperationCancelled | None:
        """Return the exception describing why the context is done, if it is."""

        if self._reason is not None:
            if self._expired:
                return DeadlineExceeded(self._reason)
            return OperationCancelled(self._reason)
        if self._parent is not None:
            parent_error = self._parent.error()
            if parent_error is not None:
                return parent_error
        if self._deadline is not None and self._clock() >= self._deadline:
            return DeadlineExceeded("context deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        error = self.error()
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Cancellation
    def cancel(self, reason: str = "context cancelled") -> None:
        """Cancel the context and fire every registered interrupt callback once."""

        self._finish(reason, expired=False)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancellation and return its unregister hook.

        The registration is forwarded to the parent chain so cancelling any
        ancestor fires it as well.  A context that is already cancelled runs
        the callback immediately.
        """

        with self._lock:
            token: int | None = None
            if self._reason is None:
                token = next(self._tokens)
                self._callbacks[token] = callback
        if token is None:
            callback()
            return _noop

        parent_unregister = self._parent.on_cancel(callback) if self._parent is not None else _noop

        def unregister() -> None:
            with self._lock:
                self._callbacks.pop(token, None)
            parent_unregister()

        return unregister

    @contextmanager
    def interruptible(self, interrupt: Callable[[], None] | None = None) -> Iterator[None]:
        """Guard a single driver call.

        The context is checked before the call.  While the call runs,
        ``interrupt`` is fired on cancellation and, when the context has a
        deadline, by a timer expiring the context at that deadline.  A driver
        failure is re-raised as :class:`OperationCancelled` only when the
        interrupt was actually delivered during the call; anything else
        propagates unchanged.
        """

        self.raise_if_done()
        if interrupt is None:
            yield
            return

        delivered = threading.Event()

        def _interrupt() -> None:
            delivered.set()
            interrupt()

        unregister = self.on_cancel(_interrupt)
        timer = self._arm_deadline()
        try:
            yield
        except OperationCancelled:
            raise
        except Exception as exc:
            if not delivered.is_set():
                raise
            raise (self.error() or OperationCancelled("operation interrupted")) from exc
        finally:
            if timer is not None:
                timer.cancel()
            unregister()

    # ------------------------------------------------------------------
    # Internal helpers
    def _finish(self, reason: str, *, expired: bool) -> None:
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            self._expired = expired
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                LOGGER.warning("Interrupt callback failed during cancellation", exc_info=True)

    def _expire(self) -> None:
        self._finish("context deadline exceeded", expired=True)

    def _arm_deadline(self) -> threading.Timer | None:
        remaining = self.remaining()
        if remaining is None:
            return None
        timer = threading.Timer(remaining, self._expire)
        timer.daemon = True
        timer.start()
        return timer

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationContext(state={state!r}, deadline={self._deadline!r})"
