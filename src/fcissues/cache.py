"""TTL cache backends with a single-flight ``worker`` primitive.

Two backends share one contract:

* ``MemoryCache``: process-local dict guarded by a lock, monotonic expiry.
* ``FileCache``: one JSON document on disk (``<cache_dir>/cache.json``) with
  wall-clock expiry so entries survive restarts. Writes take an inter-process
  lock, merge pending changes over the current file and replace it atomically
  (tmp file + rename); reads reload the document when another instance or
  process has replaced it.

Inside ``with cache.batch():`` writes are held back and persisted once when
the outermost batch exits. ``MemoryCache`` has nothing to defer.

Keys are mangled with a namespace prefix (default ``freedcamp/``) so several
clients can share a store. Values must be JSON-compatible; both backends hand
out copies so callers can never mutate a stored entry in place.

``worker(options, producer)`` runs ``producer`` at most once concurrently per
``options.id``. While a run is in flight other callers block and receive the
same result (or the same exception). Successful results are memoized under
``options.id`` for ``options.expiry``; failures are never stored. With
``enabled=False`` the memo is bypassed: the producer always runs and its
result replaces the memo.
"""

from __future__ import annotations

import copy
import json
import os
import re
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeVar

from .errors import ConfigError
from .logging import get_logger

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX, writes go unlocked
    fcntl = None  # type: ignore[assignment]

T = TypeVar("T")

Expiry = float | int | str | None

DEFAULT_NAMESPACE = "freedcamp/"
CACHE_METHODS = ("memory", "filesystem")

_MISSING: Any = object()
_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_expiry(value: Expiry) -> float | None:
    """Normalise an expiry into seconds; ``None`` means never expire.

    Accepts numbers (seconds) and duration strings such as ``30s``, ``30m``,
    ``2h``, ``1d`` or ``1w``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Invalid cache expiry: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Cache expiry must not be negative: {value!r}")
        return float(value)
    m = _DURATION.match(str(value))
    if not m:
        raise ConfigError(f"Invalid cache expiry: {value!r}")
    unit = (m.group(2) or "s").lower()
    return float(m.group(1)) * _UNIT_SECONDS[unit]


@dataclass
class WorkerOptions:
    id: str
    expiry: Expiry = None
    enabled: bool = True


class Cache(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, expiry: Expiry = None) -> None: ...

    def clear(self) -> None: ...

    def batch(self) -> AbstractContextManager[None]: ...

    def worker(self, options: WorkerOptions, producer: Callable[[], T]) -> T: ...


@dataclass
class _Flight:
    event: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: BaseException | None = None


class _BaseCache:
    """Shared key mangling and single-flight coordination."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.namespace = namespace
        self._flights: dict[str, _Flight] = {}
        self._flights_lock = threading.Lock()
        self.logger = get_logger()

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    # Backends implement these on mangled keys
    def _read(self, key: str) -> Any:  # pragma: no cover - abstract
        raise NotImplementedError

    def _write(self, key: str, value: Any, expires_in: float | None) -> None:  # pragma: no cover
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        value = self._read(self._key(key))
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, expiry: Expiry = None) -> None:
        self._write(self._key(key), value, parse_expiry(expiry))

    @contextmanager
    def batch(self) -> Iterator[None]:
        yield

    def worker(self, options: WorkerOptions, producer: Callable[[], T]) -> T:
        if not options.enabled:
            value = producer()
            self.set(options.id, value, options.expiry)
            return value

        cached = self.get(options.id, _MISSING)
        if cached is not _MISSING:
            self.logger.debug("cache worker hit", key=options.id)
            return cached  # type: ignore[no-any-return]

        with self._flights_lock:
            flight = self._flights.get(options.id)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._flights[options.id] = flight

        if not leader:
            self.logger.debug("cache worker joining in-flight run", key=options.id)
            flight.event.wait()
            if flight.error is not None:
                raise flight.error
            return copy.deepcopy(flight.result)  # type: ignore[no-any-return]

        try:
            # A run may have completed between the fast-path check and taking the lead
            value = self.get(options.id, _MISSING)
            if value is _MISSING:
                value = producer()
                self.set(options.id, value, options.expiry)
            flight.result = value
            return value  # type: ignore[no-any-return]
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._flights_lock:
                self._flights.pop(options.id, None)
            flight.event.set()


class MemoryCache(_BaseCache):
    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        super().__init__(namespace)
        self._mu = threading.Lock()
        self._data: dict[str, tuple[float | None, Any]] = {}

    def _read(self, key: str) -> Any:
        with self._mu:
            entry = self._data.get(key)
            if entry is None:
                return _MISSING
            expires_at, value = entry
            if expires_at is not None and time.monotonic() >= expires_at:
                del self._data[key]
                return _MISSING
            return copy.deepcopy(value)

    def _write(self, key: str, value: Any, expires_in: float | None) -> None:
        expires_at = None if expires_in is None else time.monotonic() + expires_in
        with self._mu:
            self._data[key] = (expires_at, copy.deepcopy(value))

    def clear(self) -> None:
        with self._mu:
            self._data.clear()

    def keys(self) -> list[str]:
        """Live (unexpired) keys without the namespace prefix."""
        now = time.monotonic()
        prefix = len(self.namespace)
        with self._mu:
            return [
                k[prefix:]
                for k, (expires_at, _) in self._data.items()
                if k.startswith(self.namespace) and (expires_at is None or expires_at > now)
            ]


@contextmanager
def _disk_lock(lock_path: Path, *, timeout_s: float = 10.0) -> Iterator[bool]:
    """Exclusive inter-process lock next to the cache file.

    Yields False when the lock could not be taken in time; the caller then
    writes unlocked.
    """
    if fcntl is None:
        yield False
        return
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "w") as fh:
        deadline = time.monotonic() + timeout_s
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if time.monotonic() >= deadline:
                    yield False
                    return
                time.sleep(0.05)
        try:
            yield True
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def _expired(entry: dict[str, Any], now: float) -> bool:
    expires_at = entry.get("expires_at")
    return expires_at is not None and now >= float(expires_at)


class FileCache(_BaseCache):
    """JSON-document cache persisted under ``cache_dir``.

    ``_items`` is the last document seen on disk with this instance's
    unpersisted writes (``_pending``) laid over it.
    """

    FILENAME = "cache.json"
    SCHEMA_VERSION = 1
    LOCK_TIMEOUT_S = 10.0

    def __init__(self, cache_dir: str | Path, namespace: str = DEFAULT_NAMESPACE) -> None:
        super().__init__(namespace)
        self._mu = threading.Lock()
        self.path = Path(cache_dir) / self.FILENAME
        self._items: dict[str, dict[str, Any]] = {}
        self._pending: dict[str, dict[str, Any]] = {}
        self._stamp: tuple[int, int, int] | None = None
        self._loaded = False
        self._depth = 0

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f".{self.path.name}.lock")

    def _disk_stamp(self) -> tuple[int, int, int] | None:
        try:
            st = self.path.stat()
        except OSError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _read_disk(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning(
                "cache file unreadable; treating as empty", path=str(self.path), error=str(exc)
            )
            return {}
        if not isinstance(raw, dict) or not isinstance(raw.get("items"), dict):
            return {}
        return {
            str(k): v for k, v in raw["items"].items() if isinstance(v, dict) and "value" in v
        }

    def _refresh(self) -> None:
        stamp = self._disk_stamp()
        if self._loaded and stamp == self._stamp:
            return
        self._items = {**self._read_disk(), **self._pending}
        self._stamp = stamp
        self._loaded = True

    def _persist(self, *, clear: bool = False) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with _disk_lock(self.lock_path, timeout_s=self.LOCK_TIMEOUT_S) as locked:
            if not locked:
                self.logger.warning(
                    "cache lock not acquired; writing unlocked", path=str(self.path)
                )
            items = {} if clear else self._read_disk()
            items.update(self._pending)
            now = time.time()
            items = {k: v for k, v in items.items() if not _expired(v, now)}
            payload = {"version": self.SCHEMA_VERSION, "items": items}
            tmp = self.path.with_suffix(self.path.suffix + f".tmp.{os.getpid()}")
            tmp.write_text(json.dumps(payload, separators=(",", ":")), encoding="utf-8")
            tmp.replace(self.path)
            self._stamp = self._disk_stamp()
        self._items = items
        self._pending = {}
        self._loaded = True

    def _read(self, key: str) -> Any:
        with self._mu:
            self._refresh()
            entry = self._items.get(key)
            if entry is None:
                return _MISSING
            if _expired(entry, time.time()):
                # Expired entries are dropped from the file on the next persist
                del self._items[key]
                self._pending.pop(key, None)
                return _MISSING
            return copy.deepcopy(entry["value"])

    def _write(self, key: str, value: Any, expires_in: float | None) -> None:
        expires_at = None if expires_in is None else time.time() + expires_in
        entry = {"value": copy.deepcopy(value), "expires_at": expires_at}
        with self._mu:
            self._refresh()
            self._items[key] = entry
            self._pending[key] = entry
            if self._depth == 0:
                self._persist()

    def clear(self) -> None:
        with self._mu:
            self._pending = {}
            self._persist(clear=True)

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._mu:
            self._depth += 1
        try:
            yield
        finally:
            with self._mu:
                self._depth -= 1
                if self._depth == 0 and self._pending:
                    self._persist()

    def keys(self) -> list[str]:
        now = time.time()
        prefix = len(self.namespace)
        with self._mu:
            self._refresh()
            return [
                k[prefix:]
                for k, entry in self._items.items()
                if k.startswith(self.namespace) and not _expired(entry, now)
            ]


def create_cache(
    method: str = "filesystem",
    *,
    namespace: str = DEFAULT_NAMESPACE,
    cache_dir: str | Path = ".fcissues_cache",
) -> MemoryCache | FileCache:
    """Build a cache backend from its selector name."""
    selector = (method or "").strip().lower()
    if selector == "memory":
        return MemoryCache(namespace=namespace)
    if selector == "filesystem":
        return FileCache(cache_dir, namespace=namespace)
    raise ConfigError(
        f"Unknown cache method {method!r}; expected one of {', '.join(CACHE_METHODS)}"
    )


__all__ = [
    "CACHE_METHODS",
    "Cache",
    "DEFAULT_NAMESPACE",
    "FileCache",
    "MemoryCache",
    "WorkerOptions",
    "create_cache",
    "parse_expiry",
]
