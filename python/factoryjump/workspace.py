"""Local filesystem implementation of the FileSource protocol.

File ids are paths relative to the workspace root, always with forward
slashes. Glob patterns use gitignore syntax via pathspec, so
``spec/factories/**/*.rb`` behaves as it does in editors.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from pathlib import Path

import pathspec

from .protocols import ChangeCallback, ChangeKind

logger = logging.getLogger(__name__)

SKIP_DIRS = {
    ".git", ".hg", ".svn", "node_modules", ".venv", "venv", "__pycache__",
    "tmp", "log", "vendor", ".bundle", "coverage",
}


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def sort_by_priority(file_ids: list[str], priority_order: list[str] | tuple[str, ...]) -> list[str]:
    """Stable-sort file ids by the first priority substring each contains.

    Files matching no entry sort last, keeping their relative order.
    """
    def priority(file_id: str) -> int:
        normalized = normalize_path(file_id)
        for index, marker in enumerate(priority_order):
            if marker in normalized:
                return index
        return len(priority_order)

    return sorted(file_ids, key=priority)


class LocalFileSource:
    """Enumerate, read, stat, and poll files under one workspace root."""

    def __init__(
        self,
        root: str | Path,
        watch_patterns: list[str] | tuple[str, ...] = ("**/*.rb",),
        encoding: str = "utf-8",
    ):
        self.root = Path(root)
        self.encoding = encoding
        self._callbacks: list[ChangeCallback] = []
        self._watch_patterns = list(watch_patterns)
        self._snapshot: dict[str, float] = {}

    @property
    def watching(self) -> bool:
        return bool(self._callbacks)

    @property
    def watch_patterns(self) -> list[str]:
        return list(self._watch_patterns)

    @watch_patterns.setter
    def watch_patterns(self, patterns: list[str] | tuple[str, ...]) -> None:
        """Replace the watched globs; an active watch restarts from a new baseline."""
        self._watch_patterns = list(patterns)
        if self._callbacks:
            self._snapshot = self._take_snapshot()

    def path_for(self, file_id: str) -> Path:
        return self.root / file_id

    def list_files(self, patterns: list[str] | tuple[str, ...]) -> list[str]:
        """Return sorted, de-duplicated file ids matching any pattern."""
        patterns = [normalize_path(p) for p in patterns if p and p.strip()]
        if not patterns:
            return []
        spec = pathspec.GitIgnoreSpec.from_lines(patterns)

        matched: set[str] = set()
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
            rel_dir = os.path.relpath(dirpath, self.root)
            for fname in filenames:
                rel = fname if rel_dir == "." else f"{normalize_path(rel_dir)}/{fname}"
                if spec.match_file(rel):
                    matched.add(rel)
        return sorted(matched)

    async def read_file(self, file_id: str) -> str:
        return await asyncio.to_thread(
            self.path_for(file_id).read_text, encoding=self.encoding, errors="replace",
        )

    def stat_modified_time(self, file_id: str) -> float:
        return os.path.getmtime(self.path_for(file_id))

    def watch_changes(self, callback: ChangeCallback) -> None:
        """Register callback for changes detected by poll_changes().

        The first registration takes a baseline snapshot so only later
        edits are reported.
        """
        if not self._callbacks:
            self._snapshot = self._take_snapshot()
        self._callbacks.append(callback)

    async def poll_changes(self) -> list[tuple[str, ChangeKind]]:
        """Diff the current mtimes against the last snapshot and notify callbacks."""
        current = self._take_snapshot()
        changes: list[tuple[str, ChangeKind]] = []
        for file_id, mtime in current.items():
            previous = self._snapshot.get(file_id)
            if previous is None:
                changes.append((file_id, ChangeKind.CREATED))
            elif mtime > previous:
                changes.append((file_id, ChangeKind.CHANGED))
        for file_id in self._snapshot:
            if file_id not in current:
                changes.append((file_id, ChangeKind.DELETED))
        self._snapshot = current

        for file_id, kind in changes:
            for callback in self._callbacks:
                result = callback(file_id, kind)
                if inspect.isawaitable(result):
                    await result
        return changes

    def _take_snapshot(self) -> dict[str, float]:
        snapshot: dict[str, float] = {}
        for file_id in self.list_files(self._watch_patterns):
            try:
                snapshot[file_id] = self.stat_modified_time(file_id)
            except OSError as e:
                logger.debug(
                    "workspace.stat_failed",
                    extra={"file": file_id, "error_type": type(e).__name__},
                )
        return snapshot
