"""In-process, file-attributed TTL cache of factory and trait definitions.

Entries expire lazily on read and can also be swept explicitly. Every
cached entity is attributed to the file it came from, so a changed file can
be re-indexed without a full rescan.

The store is not safe for concurrent writers: one owner (the IndexSession)
issues every upsert, removal, and clear.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .protocols import Factory, Trait

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60_000
MIN_TTL_MS = 1_000

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float


class ExpiringMap(Generic[K, V]):
    """Dict of key -> CacheEntry with lazy expiry and an explicit sweep."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def put(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(value, self._clock())

    def peek(self, key: K) -> V | None:
        """Return the stored value without checking expiry."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def get(self, key: K, on_expire: Callable[[K], None] | None = None) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            if on_expire is not None:
                on_expire(key)
            return None
        return entry.value

    def pop(self, key: K) -> V | None:
        entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None

    def sweep(self) -> list[K]:
        """Remove every expired entry and return the removed keys."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        return expired

    def items(self):
        return [(k, e.value) for k, e in self._entries.items()]

    def clear(self) -> None:
        self._entries.clear()

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.inserted_at > self.ttl_seconds


@dataclass
class FileIndexEntry:
    file_id: str
    last_modified: float
    factories: set[str] = field(default_factory=set)
    traits: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class CacheStats:
    factory_count: int
    trait_count: int
    file_count: int
    initialized: bool
    ttl_ms: int

    def to_dict(self) -> dict:
        return {
            "factory_count": self.factory_count,
            "trait_count": self.trait_count,
            "file_count": self.file_count,
            "initialized": self.initialized,
            "ttl_ms": self.ttl_ms,
        }


class FactoryCache:
    """Name-keyed factory/trait cache with per-file attribution."""

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._ttl_ms = max(int(ttl_ms), MIN_TTL_MS)
        self._wall_clock = wall_clock
        self._factories: ExpiringMap[str, Factory] = ExpiringMap(self._ttl_ms / 1000, clock)
        self._traits: ExpiringMap[str, Trait] = ExpiringMap(self._ttl_ms / 1000, clock)
        self._files: dict[str, FileIndexEntry] = {}
        self._initialized = False

    # --- configuration / state ---

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def set_ttl(self, ttl_ms: int) -> None:
        self._ttl_ms = max(int(ttl_ms), MIN_TTL_MS)
        self._factories.ttl_seconds = self._ttl_ms / 1000
        self._traits.ttl_seconds = self._ttl_ms / 1000

    @property
    def initialized(self) -> bool:
        return self._initialized

    def set_initialized(self, initialized: bool) -> None:
        self._initialized = initialized

    # --- inserts ---

    def upsert_factory(self, factory: Factory) -> None:
        """Insert or replace a factory by name (last write wins)."""
        previous = self._factories.peek(factory.name)
        if previous is not None and previous.location.file_id != factory.location.file_id:
            self._detach(previous.location.file_id, factory=factory.name)
        self._factories.put(factory.name, factory)
        self._attach(factory.location.file_id, factory=factory.name)

    def upsert_trait(self, trait: Trait) -> None:
        """Insert or replace a trait by ``factory:name`` key (last write wins)."""
        previous = self._traits.peek(trait.key)
        if previous is not None and previous.location.file_id != trait.location.file_id:
            self._detach(previous.location.file_id, trait=trait.key)
        self._traits.put(trait.key, trait)
        self._attach(trait.location.file_id, trait=trait.key)

    def add_factory_if_absent(self, factory: Factory) -> bool:
        """Insert only when no live entry exists (first write wins)."""
        if self.get_factory(factory.name) is not None:
            return False
        self.upsert_factory(factory)
        return True

    def add_trait_if_absent(self, trait: Trait) -> bool:
        if self.get_trait(trait.factory_name, trait.name) is not None:
            return False
        self.upsert_trait(trait)
        return True

    def upsert_factories(self, factories: Iterable[Factory]) -> None:
        for factory in factories:
            self.upsert_factory(factory)

    def upsert_traits(self, traits: Iterable[Trait]) -> None:
        for trait in traits:
            self.upsert_trait(trait)

    # --- lookups ---

    def get_factory(self, name: str) -> Factory | None:
        return self._factories.get(name, on_expire=self._forget_factory)

    def get_trait(self, factory_name: str, name: str) -> Trait | None:
        return self._traits.get(f"{factory_name}:{name}", on_expire=self._forget_trait)

    # --- removals ---

    def remove_factory(self, name: str) -> None:
        """Remove a factory and every trait whose factory_name matches."""
        factory = self._factories.pop(name)
        if factory is not None:
            self._detach(factory.location.file_id, factory=name)
        for key, trait in self._traits.items():
            if trait.factory_name == name:
                self._traits.pop(key)
                self._detach(trait.location.file_id, trait=key)

    def remove_file_attribution(self, file_id: str) -> None:
        """Remove everything file_id contributed, then its index entry."""
        entry = self._files.pop(file_id, None)
        if entry is None:
            return
        for name in entry.factories:
            self._factories.pop(name)
        for key in entry.traits:
            self._traits.pop(key)
        logger.debug(
            "cache.file_removed",
            extra={
                "file": file_id,
                "factories_removed": len(entry.factories),
                "traits_removed": len(entry.traits),
            },
        )

    def replace_file_contents(
        self,
        file_id: str,
        factories: Iterable[Factory],
        traits: Iterable[Trait],
        modified_time: float | None = None,
    ) -> None:
        """Swap in a file's new definitions, dropping everything it had before."""
        self.remove_file_attribution(file_id)
        self.upsert_factories(factories)
        self.upsert_traits(traits)
        self._files.setdefault(file_id, FileIndexEntry(file_id, 0.0)).last_modified = (
            modified_time if modified_time is not None else self._wall_clock()
        )

    def should_reindex(self, file_id: str, current_modified_time: float) -> bool:
        entry = self._files.get(file_id)
        if entry is None:
            return True
        return current_modified_time > entry.last_modified

    def cleanup_expired_entries(self) -> int:
        """Sweep expired factories and traits; return how many were removed."""
        removed_factories = self._factories.sweep()
        removed_traits = self._traits.sweep()
        for name in removed_factories:
            self._forget_factory(name)
        for key in removed_traits:
            self._forget_trait(key)
        removed = len(removed_factories) + len(removed_traits)
        if removed:
            logger.debug("cache.expired_swept", extra={"removed": removed})
        return removed

    def clear_all(self) -> None:
        self._factories.clear()
        self._traits.clear()
        self._files.clear()
        self._initialized = False

    def get_stats(self) -> CacheStats:
        return CacheStats(
            factory_count=len(self._factories),
            trait_count=len(self._traits),
            file_count=len(self._files),
            initialized=self._initialized,
            ttl_ms=self._ttl_ms,
        )

    def all_factories(self) -> list[Factory]:
        """Every stored factory, expired or not, in insertion order."""
        return [factory for _, factory in self._factories.items()]

    def file_contributions(self, file_id: str) -> tuple[set[str], set[str]] | None:
        """Return copies of (factory names, trait keys) attributed to file_id."""
        entry = self._files.get(file_id)
        if entry is None:
            return None
        return set(entry.factories), set(entry.traits)

    # --- attribution bookkeeping ---

    def _attach(self, file_id: str, factory: str | None = None, trait: str | None = None) -> None:
        entry = self._files.get(file_id)
        if entry is None:
            entry = FileIndexEntry(file_id, self._wall_clock())
            self._files[file_id] = entry
        if factory is not None:
            entry.factories.add(factory)
        if trait is not None:
            entry.traits.add(trait)

    def _detach(self, file_id: str, factory: str | None = None, trait: str | None = None) -> None:
        entry = self._files.get(file_id)
        if entry is None:
            return
        if factory is not None:
            entry.factories.discard(factory)
        if trait is not None:
            entry.traits.discard(trait)

    def _forget_factory(self, name: str) -> None:
        for entry in self._files.values():
            entry.factories.discard(name)

    def _forget_trait(self, key: str) -> None:
        for entry in self._files.values():
            entry.traits.discard(key)
