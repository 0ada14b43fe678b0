"""Subject-to-handler dispatch over a NATS connection."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Set

from .logging_setup import get_logger
from .metrics import handler_errors_total, inflight_handlers, messages_received_total


log = get_logger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class SubscriptionState(Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"


class SubscriptionError(Exception):
    """A subject could not be subscribed. Fatal at startup."""

    def __init__(self, subject: str, message: str):
        super().__init__(f"failed to subscribe to {subject}: {message}")
        self.subject = subject


class Dispatcher:
    """Binds subjects to handlers and runs every delivery as its own task.

    Deliveries are never serialised: two messages on the same subject, or for
    the same entity, may run concurrently and finish in any order. A handler
    failure is logged and does not change the subscription state.
    """

    def __init__(self, nc: Any):
        self.nc = nc
        self._subscriptions: Dict[str, Any] = {}
        self._states: Dict[str, SubscriptionState] = {}
        self._inflight: Set[asyncio.Task] = set()

    def state(self, subject: str) -> SubscriptionState:
        return self._states.get(subject, SubscriptionState.UNSUBSCRIBED)

    @property
    def subjects(self) -> List[str]:
        return [s for s, state in self._states.items() if state is SubscriptionState.SUBSCRIBED]

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def bind(self, subject: str, handler: Handler) -> None:
        """Subscribe ``handler`` to ``subject``; raises ``SubscriptionError`` on failure."""
        if self.state(subject) is SubscriptionState.SUBSCRIBED:
            raise SubscriptionError(subject, "subject is already bound")

        async def on_message(msg) -> None:
            # Return straight away so the subscription keeps delivering
            self._spawn(subject, handler, msg)

        try:
            sub = await self.nc.subscribe(subject, cb=on_message)
        except Exception as e:
            raise SubscriptionError(subject, str(e)) from e

        self._subscriptions[subject] = sub
        self._states[subject] = SubscriptionState.SUBSCRIBED
        log.info("subscribed", subject=subject)

    def _spawn(self, subject: str, handler: Handler, msg) -> asyncio.Task:
        task = asyncio.create_task(self._run(subject, handler, msg))
        self._inflight.add(task)
        inflight_handlers.inc()
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        inflight_handlers.dec()

    async def _run(self, subject: str, handler: Handler, msg) -> None:
        messages_received_total.labels(subject=subject).inc()
        try:
            await handler(msg)
        except asyncio.CancelledError:
            log.warning("handler_cancelled", subject=subject)
            raise
        except Exception as e:
            handler_errors_total.labels(subject=subject).inc()
            log.exception("handler_failed", subject=subject, error=str(e))

    async def close(self, grace: float = 5.0) -> None:
        """Unsubscribe everything, then give in-flight handlers ``grace`` seconds to finish."""
        for subject, sub in list(self._subscriptions.items()):
            try:
                await sub.unsubscribe()
            except Exception as e:
                log.warning("unsubscribe_failed", subject=subject, error=str(e))
            self._states[subject] = SubscriptionState.UNSUBSCRIBED
            del self._subscriptions[subject]

        pending = set(self._inflight)
        if not pending:
            return

        log.info("waiting_for_handlers", inflight=len(pending), grace=grace)
        _, still_running = await asyncio.wait(pending, timeout=grace)
        if still_running:
            log.warning("abandoning_handlers", count=len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)


class KeyedSequencer:
    """Striped locks that serialise work on the same key.

    Locks are fair, so work for one key runs in the order it asked for the
    lock. Different keys may share a stripe and then wait on each other.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be positive")
        self._locks = [asyncio.Lock() for _ in range(stripes)]

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._locks[hash(key) % len(self._locks)]
