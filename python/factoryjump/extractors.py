"""Factory and trait extraction from Ruby source text.

Uses regex headers plus a block scanner rather than a Ruby grammar.
Two block strategies exist:

- ``scanner`` (default) tracks ``do``/``{``/keyword openers against
  ``end``/``}`` closers, so each trait lands in its innermost enclosing
  factory even when factories nest.
- ``regex`` uses FACTORY_BLOCK_PATTERN. A block runs non-greedily to the next
  ``factory`` header, so traits that follow a nested factory are attributed
  to the nested one. Kept for comparison and as a rollback path.
"""

import asyncio
import logging
import re

from .notifications import ErrorEvent, ErrorLevel, LoggingNotifier
from .patterns import (
    BLOCK_TOKEN_PATTERN,
    FACTORY_BLOCK_PATTERN,
    FACTORY_DEFINITION_PATTERN,
    TRAIT_DEFINITION_PATTERN,
    LineIndex,
    mask_comments_and_strings,
)
from .protocols import FileSource, Location, Notifier, ParseResult, Trait, Factory

logger = logging.getLogger(__name__)

BLOCK_MODES = {"scanner", "regex"}
DEFAULT_BATCH_SIZE = 10
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 50


def clamp_batch_size(batch_size: int | None) -> int:
    if batch_size is None:
        return DEFAULT_BATCH_SIZE
    return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, int(batch_size)))


class FactoryExtractor:
    """Extract factories and traits from text, single files, or batches."""

    def __init__(
        self,
        source: FileSource | None = None,
        notifier: Notifier | None = None,
        block_mode: str = "scanner",
        batch_size: int | None = None,
    ):
        self.source = source
        self.notifier = notifier or LoggingNotifier(logger)
        if block_mode not in BLOCK_MODES:
            logger.warning(
                "extractor.invalid_block_mode",
                extra={"mode": block_mode, "fallback_mode": "scanner"},
            )
            block_mode = "scanner"
        self.block_mode = block_mode
        self.batch_size = clamp_batch_size(batch_size)

    # --- pure extraction ---

    def parse_text(self, text: str, file_id: str) -> ParseResult:
        """Parse factories and traits out of text attributed to file_id."""
        if not text:
            return ParseResult()

        masked = mask_comments_and_strings(text)
        lines = LineIndex(text)
        headers = list(FACTORY_DEFINITION_PATTERN.finditer(masked))

        if self.block_mode == "scanner":
            traits, enclosing = _scan_blocks(masked, headers, lines, file_id)
        else:
            traits = _regex_blocks(masked, lines, file_id)
            enclosing = {}

        factories = []
        for m in headers:
            line, column = lines.position(m.start())
            factories.append(Factory(
                name=m.group("name"),
                location=Location(file_id, line, column, m.end("name") - m.start()),
                parent=m.group("parent") or enclosing.get(m.start()),
            ))

        _link_traits(factories, traits)
        return ParseResult(factories=factories, traits=traits)

    def has_factory_definition(self, text: str) -> bool:
        return FACTORY_DEFINITION_PATTERN.search(mask_comments_and_strings(text)) is not None

    def extract_factory_names(self, text: str) -> list[str]:
        masked = mask_comments_and_strings(text)
        return [m.group("name") for m in FACTORY_DEFINITION_PATTERN.finditer(masked)]

    # --- I/O ---

    async def parse_file(self, file_id: str) -> ParseResult:
        """Read file_id through the file source and parse it.

        An unreadable file is reported at warning level and yields an
        empty result.
        """
        if self.source is None:
            raise RuntimeError("FactoryExtractor has no file source")
        try:
            text = await self.source.read_file(file_id)
        except (OSError, UnicodeDecodeError) as e:
            self.notifier.notify(ErrorEvent(
                level=ErrorLevel.WARNING,
                context="extractor.read_failure",
                message=f"Failed to read file: {file_id}",
                error=e,
                user_message=(
                    f'Failed to read factory file "{file_id}". Please ensure the '
                    "file exists and you have access permissions."
                ),
                details={"file": file_id},
            ))
            return ParseResult()
        return self.parse_text(text, file_id)

    async def parse_multiple_files(
        self, file_ids: list[str], batch_size: int | None = None,
    ) -> ParseResult:
        """Parse files concurrently in bounded groups.

        Groups run one after another in submission order; files within a
        group run concurrently and their results are appended in completion
        order. One file failing never affects the others.
        """
        size = clamp_batch_size(batch_size) if batch_size is not None else self.batch_size
        combined = ParseResult()
        for start in range(0, len(file_ids), size):
            group = file_ids[start:start + size]
            tasks = [asyncio.ensure_future(self._parse_isolated(f)) for f in group]
            for next_done in asyncio.as_completed(tasks):
                combined.extend(await next_done)
        return combined

    async def _parse_isolated(self, file_id: str) -> ParseResult:
        try:
            return await self.parse_file(file_id)
        except Exception as e:
            self.notifier.notify(ErrorEvent(
                level=ErrorLevel.WARNING,
                context="extractor.batch_item_failure",
                message=f"Unexpected error while parsing {file_id}",
                error=e,
                details={"file": file_id},
            ))
            return ParseResult()


def _scan_blocks(
    masked: str,
    headers: list[re.Match],
    lines: LineIndex,
    file_id: str,
) -> tuple[list[Trait], dict[int, str]]:
    """Walk headers and block tokens in offset order, tracking open factories.

    Returns the traits found inside factory blocks and, for each nested
    factory header (keyed by offset), the name of its enclosing factory.
    """
    events: list[tuple[int, int, str, object]] = []
    for m in headers:
        events.append((m.start(), 0, "factory", m))
    for m in TRAIT_DEFINITION_PATTERN.finditer(masked):
        events.append((m.start(), 1, "trait", m))
    for m in BLOCK_TOKEN_PATTERN.finditer(masked):
        events.append((m.start(), 2, m.lastgroup, m))
    events.sort(key=lambda e: (e[0], e[1]))

    traits: list[Trait] = []
    enclosing: dict[int, str] = {}
    # (factory name, depth before its opener)
    stack: list[tuple[str, int]] = []
    depth = 0
    # A header opens its block at the first `do`/`{` after it, which may sit
    # on a later line when the header's arguments span several lines.
    pending: str | None = None

    for offset, _, kind, m in events:
        if kind == "factory":
            if stack:
                enclosing[offset] = stack[-1][0]
            pending = m.group("name")
        elif kind == "trait":
            if stack:
                line, column = lines.position(offset)
                traits.append(Trait(
                    name=m.group(1),
                    location=Location(file_id, line, column, m.end(1) - offset),
                    factory_name=stack[-1][0],
                ))
        elif kind in ("do", "lbrace", "keyword"):
            if pending is not None and kind != "keyword":
                stack.append((pending, depth))
                pending = None
            depth += 1
        else:
            # A blockless header is abandoned once its surroundings close
            pending = None
            depth = max(0, depth - 1)
            while stack and stack[-1][1] >= depth:
                stack.pop()

    return traits, enclosing


def _regex_blocks(masked: str, lines: LineIndex, file_id: str) -> list[Trait]:
    traits: list[Trait] = []
    for block in FACTORY_BLOCK_PATTERN.finditer(masked):
        factory_name = block.group(1)
        body = block.group(2)
        body_offset = block.start(2)
        for m in TRAIT_DEFINITION_PATTERN.finditer(body):
            offset = body_offset + m.start()
            line, column = lines.position(offset)
            traits.append(Trait(
                name=m.group(1),
                location=Location(file_id, line, column, m.end(1) - m.start()),
                factory_name=factory_name,
            ))
    return traits


def _link_traits(factories: list[Factory], traits: list[Trait]) -> None:
    by_name = {f.name: f for f in factories}
    for trait in traits:
        factory = by_name.get(trait.factory_name)
        if factory is not None:
            factory.add_trait(trait)
