"""
Hosts the map session and the warning poller on a background event loop so
the (synchronous) Flask routes can hand work to them.

Routes talk to the loop only through `call` / `run_coroutine_threadsafe`;
session state is never touched from request threads directly.
"""
import asyncio
import logging
import threading
from typing import Optional

from services.session import ViewportSession
from services.warning_feed import WarningPoller, default_view
from utils.geo import Viewport

log = logging.getLogger(__name__)


class MapRuntime:
    def __init__(self, session: Optional[ViewportSession] = None,
                 poller: Optional[WarningPoller] = None):
        self._session = session
        self._poller = poller
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._poll_task = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever,
                                        name="map-runtime", daemon=True)
        self._thread.start()
        self.call(self._bootstrap)
        log.info("map runtime started")

    async def _bootstrap(self):
        # built on the loop so their tasks belong to it
        self._session = self._session or ViewportSession()
        self._poller = self._poller or WarningPoller()
        self._session.start()
        self._poll_task = asyncio.create_task(self._poller.run())

    def call(self, coro_fn, *args, timeout: float = 5.0):
        """Runs `coro_fn(*args)` on the runtime loop and waits for its result."""
        fut = asyncio.run_coroutine_threadsafe(coro_fn(*args), self._loop)
        return fut.result(timeout)

    def submit_viewport(self, viewport: Viewport) -> dict:
        async def apply():
            self._session.on_view_change(viewport)
            return self._snapshot()
        return self.call(apply)

    def alerts(self) -> dict:
        async def read():
            return self._snapshot()
        return self.call(read)

    def radars(self) -> dict:
        async def read():
            view = self._session.radar_view
            return {
                "hidden": view.hidden,
                "too_many": view.too_many,
                "total": view.total,
                "clusters": [c.to_dict(lambda p: p.to_dict()) for c in view.clusters],
            }
        return self.call(read)

    def warnings(self) -> dict:
        async def read():
            current = list(self._poller.warnings)
            return {
                "warnings": [w.to_dict() for w in current],
                "view": default_view(current),
            }
        return self.call(read)

    def _snapshot(self) -> dict:
        return self._session.snapshot()

    def stop(self):
        if not self.running:
            return

        async def shutdown():
            if self._poll_task is not None:
                self._poll_task.cancel()
                await asyncio.gather(self._poll_task, return_exceptions=True)
            await self._session.close()

        try:
            self.call(shutdown)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            log.info("map runtime stopped")
