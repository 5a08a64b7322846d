"""
In-memory channel registry.

Holds the latest channel snapshot and refreshes it from the channel feed.
Concurrent refreshes share one in-flight fetch, and a failed refresh keeps
serving the previous snapshot.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from fastapi import Request

from freeview.models.channel import Channel, RegistrySnapshot

logger = logging.getLogger(__name__)

ChannelLoader = Callable[[], Awaitable[list[Channel]]]


class ChannelRegistry:
    """Channel snapshot cache with single-flight refresh."""

    def __init__(
        self,
        loader: ChannelLoader,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot = RegistrySnapshot()
        self._refresh_task: Optional[asyncio.Task] = None
        self._auto_refresh_task: Optional[asyncio.Task] = None
        self._stats = {
            "refreshes": 0,
            "failures": 0,
            "last_error": None,
        }

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def is_stale(self) -> bool:
        snapshot = self._snapshot
        if not snapshot.channels or not snapshot.fetched_at:
            return True
        return self._clock() - snapshot.fetched_at > self.ttl_seconds

    async def get(self) -> list[Channel]:
        """Current channels, refreshing first when empty or expired."""
        if self.is_stale():
            await self.refresh()
        return list(self._snapshot.channels)

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        for channel in await self.get():
            if channel.id == channel_id:
                return channel
        return None

    async def refresh(self) -> list[Channel]:
        """
        Reload the channel list, joining a refresh already in flight.

        Returns the snapshot in place once the refresh settles, which is the
        previous one when the refresh failed.
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._do_refresh())
            self._refresh_task = task
        else:
            logger.debug("Channel refresh already in progress, joining it")
        # shield: a cancelled waiter must not cancel the fetch other callers share
        await asyncio.shield(task)
        return list(self._snapshot.channels)

    async def _do_refresh(self):
        started = self._clock()
        logger.info("Refreshing channel registry")
        try:
            channels = await self._loader()
            if not channels:
                raise ValueError("channel feed contained no channels")
        except Exception as e:
            self._stats["failures"] += 1
            self._stats["last_error"] = str(e)
            logger.error(
                f"Channel refresh failed, keeping {len(self._snapshot.channels)} cached channels: {e}"
            )
            return
        finally:
            self._refresh_task = None

        self._snapshot = RegistrySnapshot(channels=tuple(channels), fetched_at=self._clock())
        self._stats["refreshes"] += 1
        self._stats["last_error"] = None
        logger.info(f"Channel registry updated with {len(channels)} channels "
                    f"in {self._clock() - started:.2f}s")

    def start_auto_refresh(self, interval_seconds: float):
        """Refresh in the background whenever the snapshot goes stale."""
        if self._auto_refresh_task is not None:
            logger.warning("Channel auto-refresh already running")
            return
        self._auto_refresh_task = asyncio.create_task(self._auto_refresh_loop(interval_seconds))
        logger.info(f"Channel auto-refresh started ({interval_seconds:g}s interval)")

    async def stop(self):
        """Stop the background refresh loop."""
        task = self._auto_refresh_task
        self._auto_refresh_task = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Channel auto-refresh stopped")

    async def _auto_refresh_loop(self, interval_seconds: float):
        while True:
            try:
                if self.is_stale():
                    await self.refresh()
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Channel auto-refresh error: {e}")
                await asyncio.sleep(interval_seconds)

    def stats(self) -> dict:
        snapshot = self._snapshot
        return {
            **self._stats,
            "channels": len(snapshot.channels),
            "age_seconds": round(self._clock() - snapshot.fetched_at, 1) if snapshot.fetched_at else None,
            "refreshing": self._refresh_task is not None,
        }


def get_registry(request: Request) -> ChannelRegistry:
    """Channel registry owned by the running application."""
    return request.app.state.registry
