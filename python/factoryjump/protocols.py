"""Data model and collaborator protocols for factoryjump.

Defines the entities produced by extraction (Location, Factory, Trait),
the resolver output (Reference), and the FileSource/Notifier protocols
that decouple the core from I/O and user-facing reporting.
"""

from __future__ import annotations

import enum
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class Location:
    """Position of a definition or reference inside one file."""
    file_id: str
    line: int
    column: int | None = None
    length: int | None = None

    def __str__(self) -> str:
        return f"{os.path.basename(self.file_id)}:{self.line + 1}:{(self.column or 0) + 1}"

    def to_dict(self) -> dict:
        return {
            "file": self.file_id,
            "line": self.line,
            "column": self.column,
            "length": self.length,
        }


@dataclass(frozen=True)
class Trait:
    """A named modifier scoped to one factory (referenced by name only)."""
    name: str
    location: Location
    factory_name: str

    @property
    def key(self) -> str:
        return f"{self.factory_name}:{self.name}"

    def __str__(self) -> str:
        return f"Trait: {self.name} in factory {self.factory_name} at {self.location}"


@dataclass(eq=False)
class Factory:
    """A named factory definition. Owns its traits, keyed by trait name."""
    name: str
    location: Location
    parent: str | None = None
    traits: dict[str, Trait] = field(default_factory=dict, repr=False)

    def add_trait(self, trait: Trait) -> None:
        self.traits[trait.name] = trait

    def get_trait(self, name: str) -> Trait | None:
        return self.traits.get(name)

    def has_trait(self, name: str) -> bool:
        return name in self.traits

    def all_traits(self) -> list[Trait]:
        return list(self.traits.values())

    def trait_count(self) -> int:
        return len(self.traits)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Factory):
            return NotImplemented
        return (
            self.name == other.name
            and self.location == other.location
            and self.parent == other.parent
        )

    def __hash__(self) -> int:
        return hash((self.name, self.location, self.parent))

    def __str__(self) -> str:
        parent = f" extends {self.parent}" if self.parent else ""
        count = self.trait_count()
        trait_info = f" ({count} traits)" if count else ""
        return f"Factory: {self.name}{parent} at {self.location}{trait_info}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "parent": self.parent,
            "location": self.location.to_dict(),
            "traits": sorted(self.traits),
        }


@dataclass
class ParseResult:
    """Output of one extraction pass: factories and traits in document order."""
    factories: list[Factory] = field(default_factory=list)
    traits: list[Trait] = field(default_factory=list)

    def extend(self, other: ParseResult) -> None:
        self.factories.extend(other.factories)
        self.traits.extend(other.traits)

    def to_dict(self) -> dict:
        return {
            "factories": [f.to_dict() for f in self.factories],
            "traits": [
                {"name": t.name, "factory": t.factory_name, "location": t.location.to_dict()}
                for t in self.traits
            ],
        }


class ReferenceKind(str, enum.Enum):
    FACTORY = "factory"
    TRAIT = "trait"


@dataclass(frozen=True)
class SourceSpan:
    """Absolute [start, end) offsets of a symbol, plus line/column of start."""
    start: int
    end: int
    line: int
    column: int


@dataclass(frozen=True)
class Reference:
    """A call-site symbol resolved to the location of its definition."""
    source_span: SourceSpan
    kind: ReferenceKind
    target: Location
    context_factory_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "start": self.source_span.start,
            "end": self.source_span.end,
            "line": self.source_span.line,
            "column": self.source_span.column,
            "target": self.target.to_dict(),
            "factory": self.context_factory_name,
        }


class ChangeKind(str, enum.Enum):
    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"


ChangeCallback = Callable[[str, ChangeKind], "Awaitable[None] | None"]


class FileSource(Protocol):
    """Protocol for enumerating and reading source files."""

    # Globs that watch_changes() reports on; reassigned when configuration changes
    watch_patterns: list[str]

    def list_files(self, patterns: list[str]) -> list[str]:
        """Return file ids matching any of the glob patterns."""
        ...

    async def read_file(self, file_id: str) -> str:
        """Return the text of a file. Raises OSError when unreadable."""
        ...

    def stat_modified_time(self, file_id: str) -> float:
        """Return the file's modification time in seconds since the epoch."""
        ...

    def watch_changes(self, callback: ChangeCallback) -> None:
        """Register a callback invoked as callback(file_id, change_kind)."""
        ...


class Notifier(Protocol):
    """Protocol for structured log/error events raised by the core."""

    def notify(self, event) -> None:
        ...
