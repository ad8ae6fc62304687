"""Index session: the explicit context owning extractor, cache, and resolver.

One session serves one workspace. It is the cache's only writer and applies
two deliberate conflict policies:

- full initialization walks files in priority order and keeps the *first*
  definition of each name (``add_*_if_absent``);
- incremental file updates replace that file's contributions wholesale, so
  the *latest* edit wins (``replace_file_contents``).
"""

from __future__ import annotations

import logging

from .config import FactoryJumpConfig
from .extractors import FactoryExtractor
from .file_cache import FactoryCache
from .notifications import ErrorEvent, ErrorLevel, LoggingNotifier, safe_call
from .protocols import ChangeKind, Factory, FileSource, Notifier, Reference
from .resolver import ReferenceResolver
from .workspace import sort_by_priority

logger = logging.getLogger(__name__)


class IndexSession:
    def __init__(
        self,
        config: FactoryJumpConfig,
        source: FileSource,
        notifier: Notifier | None = None,
        cache: FactoryCache | None = None,
    ):
        self.config = config
        self.source = source
        self.notifier = notifier or LoggingNotifier(logger, debug=config.debug)
        self.cache = cache or FactoryCache(config.cache_timeout_ms)
        self._build_services()
        self._running = False
        self._rerun_requested = False
        self.initialize_runs = 0

    def _build_services(self) -> None:
        self.extractor = FactoryExtractor(
            self.source,
            self.notifier,
            block_mode=self.config.block_mode,
            batch_size=self.config.batch_size,
        )
        self.resolver = ReferenceResolver(
            self.cache, self.config.factory_methods, self.notifier,
        )

    @property
    def initialized(self) -> bool:
        return self.cache.initialized

    async def initialize(self, force: bool = False) -> bool:
        """Index every configured factory file from scratch.

        Only one initialization runs at a time. A request that arrives while
        one is in flight makes the running one start over once it finishes,
        so the newest request's view wins without two clears interleaving.
        Returns True when the cache ends up initialized.
        """
        if self._running:
            self._rerun_requested = True
            return False
        if self.cache.initialized and not force:
            return True

        self._running = True
        try:
            while True:
                self._rerun_requested = False
                await self._initialize_once()
                if not self._rerun_requested:
                    break
        except Exception as e:
            self.notifier.notify(ErrorEvent(
                level=ErrorLevel.ERROR,
                context="session.initialize_failed",
                message="Failed to initialize factory files",
                error=e,
                user_message="Failed to index factory files. Factory links are unavailable.",
                retry=lambda: self.initialize(force=True),
            ))
        finally:
            self._running = False
        return self.cache.initialized

    async def _initialize_once(self) -> None:
        self.initialize_runs += 1
        files = self.source.list_files(list(self.config.factory_paths))
        files = sort_by_priority(files, self.config.priority_order)

        self.cache.clear_all()
        result = await self.extractor.parse_multiple_files(files, self.config.batch_size)

        # Batch results arrive in completion order; collisions are decided by
        # file priority, first definition wins.
        rank = {file_id: index for index, file_id in enumerate(files)}

        def by_rank(entity):
            return rank.get(entity.location.file_id, len(rank))

        for factory in sorted(result.factories, key=by_rank):
            self.cache.add_factory_if_absent(factory)
        for trait in sorted(result.traits, key=by_rank):
            self.cache.add_trait_if_absent(trait)

        self.cache.set_initialized(True)
        stats = self.cache.get_stats()
        self.notifier.notify(ErrorEvent(
            level=ErrorLevel.DEBUG,
            context="session.initialized",
            message=(
                f"Factory initialization completed: {stats.factory_count} factories, "
                f"{stats.trait_count} traits"
            ),
            details={"files": len(files), **stats.to_dict()},
        ))

    async def handle_file_change(self, file_id: str, kind: ChangeKind | str) -> bool:
        """Bring one file's contributions up to date. Returns True if reindexed."""
        kind = ChangeKind(kind)
        if kind == ChangeKind.DELETED:
            self.cache.remove_file_attribution(file_id)
            return True

        try:
            modified = self.source.stat_modified_time(file_id)
        except OSError as e:
            self.notifier.notify(ErrorEvent(
                level=ErrorLevel.WARNING,
                context="session.stat_failed",
                message=f"File vanished before reindex: {file_id}",
                error=e,
                details={"file": file_id},
            ))
            self.cache.remove_file_attribution(file_id)
            return False

        if not self.cache.should_reindex(file_id, modified):
            return False

        result = await self.extractor.parse_file(file_id)
        self.cache.replace_file_contents(
            file_id, result.factories, result.traits, modified_time=modified,
        )
        self.notifier.notify(ErrorEvent(
            level=ErrorLevel.DEBUG,
            context="session.file_reindexed",
            message=f"Factory file changed: {file_id}",
            details={
                "file": file_id,
                "factories": len(result.factories),
                "traits": len(result.traits),
            },
        ))
        return True

    def resolve(self, text: str) -> list[Reference]:
        if not self.cache.initialized:
            return []
        return safe_call(
            self.notifier,
            lambda: self.resolver.resolve_references(text),
            [],
            "session.resolve_failed",
            level=ErrorLevel.ERROR,
        )

    def find_factory(self, name: str) -> Factory | None:
        return self.cache.get_factory(name)

    async def apply_config(self, config: FactoryJumpConfig) -> bool:
        """Switch to a new configuration and reindex from scratch."""
        self.config = config
        if isinstance(self.notifier, LoggingNotifier):
            self.notifier.debug = config.debug
        self.cache.set_ttl(config.cache_timeout_ms)
        self.source.watch_patterns = list(config.factory_paths)
        self._build_services()
        self.cache.set_initialized(False)
        return await self.initialize(force=True)

    def watch(self) -> None:
        """Route file-source change events into handle_file_change."""
        self.source.watch_changes(self.handle_file_change)
