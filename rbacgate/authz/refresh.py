from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from rbacgate.authz.cache import PolicyCache
from rbacgate.authz.policy import PolicyConfig

logger = logging.getLogger(__name__)

PolicyLoader = Callable[[], Optional[PolicyConfig]]


class PolicyRefresher:
    """
    Periodically reload a policy into the cache on a background thread.

    With `key=None` the loaded document replaces the active policy; otherwise it
    is upserted under `key` in the named map. The loader runs with no cache lock
    held. A tick that overruns the interval is not made up: the next wait starts
    when the previous tick finishes.
    """

    def __init__(
        self,
        cache: PolicyCache,
        loader: PolicyLoader,
        *,
        key: Optional[str] = None,
        interval_seconds: float = 10.0,
        name: str = "policy-refresher",
    ) -> None:
        self._cache = cache
        self._loader = loader
        self._key = key
        self._interval = max(0.05, float(interval_seconds))
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def refresh_once(self) -> bool:
        """Run one reload. Returns True when the cache was updated."""
        try:
            policy = self._loader()
        except Exception as e:
            logger.warning("%s: reload failed, keeping current policy: %s", self._name, str(e))
            return False
        if policy is None:
            logger.debug("%s: loader returned no policy", self._name)
            return False
        if self._key is None:
            self._cache.replace_active(policy)
        else:
            self._cache.upsert_named(self._key, policy)
        logger.debug("%s: policy %r applied", self._name, policy.name)
        return True

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.refresh_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("%s started (interval=%.1fs)", self._name, self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self._thread = None
