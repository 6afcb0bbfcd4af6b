"""
Stage Cache Layer

RESPONSIBILITY: Memoize pipeline stages by content-addressed key
ALLOWED INPUTS: Keys from the key deriver, stage compute coroutines
OUTPUTS: StageOutcome (value + whether it came from the store)

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret stage values
- Expire entries implicitly (no TTL; deletion is explicit)
- Persist a failed computation
- Let a cancelled caller cancel a computation other callers wait on

BOUNDARY ENFORCEMENT:
=====================
- The store handle is passed in explicitly, never a module global
- At most ONE computation per key is in flight at any time
- Different keys never block each other
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging
import time

from ..keys import Key


logger = logging.getLogger(__name__)


# =============================================================================
# STORE INTERFACE (Dependency Inversion)
# =============================================================================

class CacheStore:
    """
    Abstract key/value store for stage values.

    Implementations may be backed by memory, files or a database;
    values are immutable stage results and are never mutated in place.
    """

    def get(self, key: Key) -> Optional[Any]:
        raise NotImplementedError

    def put(self, key: Key, value: Any):
        raise NotImplementedError

    def contains(self, key: Key) -> bool:
        raise NotImplementedError

    def delete(self, key: Key) -> bool:
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError

    def keys(self) -> List[Key]:
        raise NotImplementedError


class InMemoryCacheStore(CacheStore):
    """
    In-memory reference store.
    Suitable for testing and single-process deployments.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._keys: Dict[str, Key] = {}

    def get(self, key: Key) -> Optional[Any]:
        return self._entries.get(key.value)

    def put(self, key: Key, value: Any):
        self._entries[key.value] = value
        self._keys[key.value] = key

    def contains(self, key: Key) -> bool:
        return key.value in self._entries

    def delete(self, key: Key) -> bool:
        self._keys.pop(key.value, None)
        return self._entries.pop(key.value, None) is not None

    def clear(self):
        self._entries.clear()
        self._keys.clear()

    def keys(self) -> List[Key]:
        return list(self._keys.values())

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# STAGE CACHE
# =============================================================================

@dataclass(frozen=True)
class StageOutcome:
    """Value returned by the Stage Cache. from_cache is True only for store hits."""
    value: Any
    from_cache: bool


def _consume_exception(task: asyncio.Task):
    # Every caller may have been cancelled; retrieve the error so the loop
    # does not report it as never retrieved.
    if not task.cancelled():
        task.exception()


class StageCache:
    """
    Single-flight memoization of stage computations.

    GUARANTEES:
    ===========
    1. A stored value is returned without calling compute
    2. Concurrent callers for one key share one computation
    3. Failures propagate to every current waiter and are not stored
    4. Callers await a shielded task: cancelling a caller leaves the
       computation running, and it still populates the store
    """

    def __init__(self, store: CacheStore, metrics=None):
        self._store = store
        self._metrics = metrics
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def get_or_compute(
        self,
        key: Key,
        compute: Callable[[], Awaitable[Any]],
        cacheable: Optional[Callable[[Any], bool]] = None
    ) -> StageOutcome:
        """
        Return the value stored under key, computing it at most once.

        `cacheable(value)` decides whether a fresh value is persisted;
        it is returned to the current waiters either way.
        """
        if self._store.contains(key):
            self._record("stage_cache_hits_total", key)
            logger.debug("cache hit %s", key)
            return StageOutcome(value=self._store.get(key), from_cache=True)

        task = self._in_flight.get(key.value)
        if task is None:
            self._record("stage_cache_misses_total", key)
            task = asyncio.ensure_future(self._compute(key, compute, cacheable))
            task.add_done_callback(_consume_exception)
            self._in_flight[key.value] = task
        else:
            self._record("stage_cache_joins_total", key)
            logger.debug("joining in-flight computation for %s", key)

        value = await asyncio.shield(task)
        return StageOutcome(value=value, from_cache=False)

    async def _compute(
        self,
        key: Key,
        compute: Callable[[], Awaitable[Any]],
        cacheable: Optional[Callable[[Any], bool]]
    ) -> Any:
        started = time.perf_counter()
        try:
            value = await compute()
        except BaseException:
            self._record("stage_cache_failures_total", key)
            logger.info("computation for %s failed; nothing stored", key)
            raise
        else:
            if cacheable is None or cacheable(value):
                self._store.put(key, value)
            else:
                logger.info("value for %s not persisted (degraded)", key)
            self._record("stage_cache_computations_total", key)
            if self._metrics is not None:
                self._metrics.record(
                    "stage_compute_duration_ms",
                    (time.perf_counter() - started) * 1000,
                    {"namespace": key.namespace},
                )
            return value
        finally:
            self._in_flight.pop(key.value, None)

    def invalidate(self, key: Key) -> bool:
        """Explicitly delete one stored value."""
        return self._store.delete(key)

    def clear(self):
        self._store.clear()

    def _record(self, metric: str, key: Key):
        if self._metrics is not None:
            self._metrics.record(metric, 1, {"namespace": key.namespace})
