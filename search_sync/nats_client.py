from __future__ import annotations

import os
import tempfile
from typing import Optional

from nats.aio.client import Client as NATS

from .logging_setup import get_logger
from .metrics import nats_connected


log = get_logger(__name__)


def write_creds_file(creds: str) -> str:
    """Write a NATS credentials blob to a private temp file and return its path."""
    fd, path = tempfile.mkstemp(prefix="nats-user-", suffix=".creds")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(creds)
    except Exception:
        os.unlink(path)
        raise
    return path


class NatsConnection:
    """Owns the shared NATS client used by every subscription."""

    def __init__(self, url: str, creds: str):
        self.url = url
        self.creds = creds
        self.nc: Optional[NATS] = None
        self._creds_path: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    async def connect(self) -> NATS:
        self._creds_path = write_creds_file(self.creds)
        self.nc = NATS()
        try:
            await self.nc.connect(
                servers=[self.url],
                user_credentials=self._creds_path,
                error_cb=self._on_error,
                disconnected_cb=self._on_disconnected,
                reconnected_cb=self._on_reconnected,
            )
        except Exception:
            self.nc = None
            self._remove_creds()
            raise
        nats_connected.set(1)
        log.info("nats_connected", url=self.url)
        return self.nc

    async def _on_error(self, e: Exception) -> None:
        log.error("nats_error", error=str(e))

    async def _on_disconnected(self) -> None:
        nats_connected.set(0)
        log.warning("nats_disconnected")

    async def _on_reconnected(self) -> None:
        nats_connected.set(1)
        log.info("nats_reconnected", url=self.url)

    async def close(self) -> None:
        """Drain pending deliveries and outbound buffers, then close."""
        try:
            nats_connected.set(0)
            if self.nc and self.nc.is_connected:
                await self.nc.drain()
            elif self.nc and not self.nc.is_closed:
                await self.nc.close()
        finally:
            self.nc = None
            self._remove_creds()

    def _remove_creds(self) -> None:
        if self._creds_path:
            try:
                os.unlink(self._creds_path)
            except OSError as e:
                log.warning("creds_cleanup_failed", path=self._creds_path, error=str(e))
            self._creds_path = None
