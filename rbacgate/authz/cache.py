from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from rbacgate.authz.errors import PolicyUnavailable
from rbacgate.authz.policy import PolicyConfig

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Reader-writer lock on top of threading.Condition.

    Readers share the lock; a writer holds it alone. Once a writer is waiting,
    new readers queue behind it so a steady read load cannot starve writes.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting > 0:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers > 0:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class PolicyCache:
    """
    Holds the active (default) policy plus per-application named policies.

    The two are guarded by independent locks, so upserting a named policy never
    blocks readers of the active one. Stored documents are immutable, so reads
    hand out the stored object itself.
    """

    def __init__(self, initial: Optional[PolicyConfig] = None) -> None:
        self._active = initial
        self._active_lock = ReadWriteLock()
        self._named: Dict[str, PolicyConfig] = {}
        self._named_lock = ReadWriteLock()

    def get_active(self) -> PolicyConfig:
        with self._active_lock.read():
            policy = self._active
        if policy is None:
            raise PolicyUnavailable("policy cache was never initialized")
        return policy

    def replace_active(self, policy: PolicyConfig) -> None:
        with self._active_lock.write():
            self._active = policy

    def get_named(self, key: str) -> Optional[PolicyConfig]:
        with self._named_lock.read():
            return self._named.get(key)

    def upsert_named(self, key: str, policy: PolicyConfig) -> None:
        with self._named_lock.write():
            self._named[key] = policy

    def remove_named(self, key: str) -> bool:
        with self._named_lock.write():
            return self._named.pop(key, None) is not None

    def named_keys(self) -> List[str]:
        with self._named_lock.read():
            return sorted(self._named)

    def effective_policy(
        self,
        prefer_remote: bool,
        remote_lookup: Callable[[str], Optional[PolicyConfig]],
        key: str,
    ) -> PolicyConfig:
        """
        Pick the policy a decision should use.

        When `prefer_remote` is set, `remote_lookup(key)` wins over the
        active policy. Lookup failures fall back to the active policy.
        """
        if prefer_remote:
            try:
                remote = remote_lookup(key)
            except Exception as e:
                logger.warning("Remote policy lookup failed, using local policy: %s", str(e))
                remote = None
            if remote is not None:
                return remote
        return self.get_active()
