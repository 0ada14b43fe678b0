import asyncio
import signal
from typing import Any, Dict, Optional

import uvicorn

from .config import Settings, settings
from .dispatcher import Dispatcher, KeyedSequencer, SubscriptionState
from .health import create_health_api
from .index import IndexCollection, build_typesense_client
from .logging_setup import get_logger
from .nats_client import NatsConnection
from .synchronizer import Subjects, Synchronizer


log = get_logger(__name__)


class Service:
    """Owns the process lifecycle: connect, subscribe, run until signalled, drain.

    Any failure before every subject is subscribed aborts startup; after that
    failures stay inside the handler of the message that caused them.
    """

    def __init__(
        self,
        config: Settings = settings,
        users: Optional[IndexCollection] = None,
        posts: Optional[IndexCollection] = None,
    ) -> None:
        self.settings = config
        log.info("service_start", service=config.service_name)

        if not config.typesense_api_key:
            log.warning("typesense_api_key_missing", detail="index requests will fail until TYPESENSE_API_KEY is set")

        # Shared Typesense handles, one per collection endpoint; built on first request
        self.users = users or IndexCollection(
            build_typesense_client(config.typesense_users_url, config.typesense_api_key, config.index_timeout),
            config.users_collection,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
        )
        self.posts = posts or IndexCollection(
            build_typesense_client(config.typesense_posts_url, config.typesense_api_key, config.index_timeout),
            config.posts_collection,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
        )

        self.synchronizer = Synchronizer(
            self.users,
            self.posts,
            subjects=Subjects.from_settings(config),
            sequencer=KeyedSequencer() if config.serialize_by_id else None,
        )

        self.nats: Optional[NatsConnection] = None
        self.dispatcher: Optional[Dispatcher] = None
        self.server: Optional[uvicorn.Server] = None

        # Lifecycle primitives
        self.stop_event = asyncio.Event()
        self.running = False

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Connect to NATS and subscribe every subject; raises on any failure."""
        creds = self.settings.require_nats_creds()

        self.nats = NatsConnection(self.settings.nats_url, creds)
        nc = await self.nats.connect()

        self.dispatcher = Dispatcher(nc)
        await self.synchronizer.bind(self.dispatcher)

        if self.settings.health_enabled:
            app = create_health_api(self)
            config = uvicorn.Config(
                app,
                host="0.0.0.0",
                port=self.settings.health_check_port,
                log_level=self.settings.log_level.lower(),
                access_log=False,
            )
            self.server = uvicorn.Server(config)
            self._tasks.append(asyncio.create_task(self._run_server()))

        self.running = True
        log.info("listening", subjects=self.dispatcher.subjects)

    async def _run_server(self) -> None:
        try:
            await self.server.serve()
        except Exception as e:
            log.error("health_server_failed", error=str(e))

    def _handle_signal(self) -> None:
        log.info("stop_requested")
        self.stop_event.set()

    def health_status(self) -> Dict[str, Any]:
        subjects = {
            subject: (self.dispatcher.state(subject) if self.dispatcher else SubscriptionState.UNSUBSCRIBED).value
            for subject in self.synchronizer.routes
        }
        nats_ok = self.nats is not None and self.nats.connected
        ready = (
            self.running
            and nats_ok
            and all(state == SubscriptionState.SUBSCRIBED.value for state in subjects.values())
        )
        return {
            "status": "ready" if ready else "not_ready",
            "service": self.settings.service_name,
            "nats_connected": nats_ok,
            "subjects": subjects,
            "inflight_handlers": self.dispatcher.inflight if self.dispatcher else 0,
        }

    async def shutdown(self) -> None:
        """Stop accepting messages, let in-flight handlers finish within the grace period, drain NATS."""
        self.running = False

        if self.dispatcher is not None:
            await self.dispatcher.close(grace=self.settings.shutdown_grace)

        if self.nats is not None:
            try:
                await self.nats.close()
            except Exception as e:
                log.warning("nats_close_failed", error=str(e))

        if self.server is not None:
            self.server.should_exit = True
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.settings.shutdown_grace)
            for t in pending:
                t.cancel()
            self._tasks = []

        log.info("service_stop")

    async def run(self) -> None:
        """Start the service and wait until a stop signal; then shut down gracefully."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_signal)

        try:
            await self.start()
            await self.stop_event.wait()
        finally:
            await self.shutdown()


def main() -> None:
    asyncio.run(Service().run())
