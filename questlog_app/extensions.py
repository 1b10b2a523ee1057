"""
Application singletons: the background event loop and the SmartSearch
pipeline.

Flask handles requests on worker threads while the IGDB client, its rate
limiter and the in-memory query locks are asyncio objects bound to one loop.
run_async() hands coroutines to that single loop running in a daemon thread
and blocks the calling thread until the result is ready.
"""

import asyncio
import logging
import threading
from typing import Optional

from .catalog.providers.base import BaseCatalogProvider
from .catalog.providers.igdb import IGDBProvider
from .search.config import SearchSettings
from .search.smart_search import SmartSearch

logger = logging.getLogger(__name__)


# =============================================================================
# BACKGROUND EVENT LOOP
# =============================================================================

class EventLoopThread:
    """An asyncio loop running forever in a daemon thread."""

    def __init__(self, name: str = "questlog-async"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _run(self, loop: asyncio.AbstractEventLoop, ready: threading.Event):
        asyncio.set_event_loop(loop)
        ready.set()
        loop.run_forever()

    def get_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                ready = threading.Event()
                self._thread = threading.Thread(
                    target=self._run, args=(loop, ready), name=self.name, daemon=True
                )
                self._thread.start()
                ready.wait()
                self._loop = loop
                logger.debug(f"Started event loop thread '{self.name}'")
            return self._loop

    def run(self, coro, timeout: Optional[float] = None):
        future = asyncio.run_coroutine_threadsafe(coro, self.get_loop())
        return future.result(timeout)

    def stop(self):
        with self._lock:
            if self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread:
                self._thread.join(timeout=5)
            self._loop.close()
            self._loop = None
            self._thread = None


_loop_thread = EventLoopThread()


def run_async(coro, timeout: Optional[float] = None):
    """Run a coroutine on the shared loop and return its result."""
    return _loop_thread.run(coro, timeout)


# =============================================================================
# SMART SEARCH SINGLETON
# =============================================================================

_smart_search: Optional[SmartSearch] = None
_smart_search_lock = threading.Lock()


def init_smart_search(settings: Optional[SearchSettings] = None,
                      provider: Optional[BaseCatalogProvider] = None,
                      session_factory=None) -> SmartSearch:
    """Build (or rebuild) the global SmartSearch."""
    global _smart_search
    settings = settings or SearchSettings.from_env()
    provider = provider or IGDBProvider()
    with _smart_search_lock:
        _smart_search = SmartSearch.from_settings(settings, provider, session_factory)
    logger.info(
        f"Smart search ready (provider={provider.name}, locks={_smart_search.lock.backend})"
    )
    return _smart_search


def get_smart_search() -> SmartSearch:
    """Get the global SmartSearch, building it from the environment if needed."""
    if _smart_search is None:
        return init_smart_search()
    return _smart_search
