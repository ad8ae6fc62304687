"""Resolve factory call sites in arbitrary text to cached definitions."""

import logging

from .file_cache import FactoryCache
from .notifications import ErrorEvent, ErrorLevel, LoggingNotifier
from .patterns import (
    DEFAULT_FACTORY_METHODS,
    TRAIT_REFERENCE_PATTERN,
    LineIndex,
    PatternError,
    build_call_pattern,
)
from .protocols import Notifier, Reference, ReferenceKind, SourceSpan

logger = logging.getLogger(__name__)


class ReferenceResolver:
    """Maps ``create(:user, :admin)``-style symbols to factory/trait locations.

    Reads the cache, never writes it. Holds no state between calls apart
    from the compiled call-site pattern.
    """

    def __init__(
        self,
        cache: FactoryCache,
        factory_methods=DEFAULT_FACTORY_METHODS,
        notifier: Notifier | None = None,
    ):
        self.cache = cache
        self.notifier = notifier or LoggingNotifier(logger)
        self.factory_methods = list(factory_methods or [])
        self._pattern = None
        self._pattern_error: PatternError | None = None
        try:
            self._pattern = build_call_pattern(self.factory_methods)
        except PatternError as e:
            self._pattern_error = e

    def resolve_references(self, text: str) -> list[Reference]:
        """Return resolved references in call-site order, factory before traits.

        Unknown factories and traits are skipped without reporting.
        """
        if self._pattern is None:
            self.notifier.notify(ErrorEvent(
                level=ErrorLevel.ERROR,
                context="resolver.pattern_failure",
                message="Call-site pattern could not be built",
                error=self._pattern_error,
                user_message=(
                    "An error occurred while parsing factory calls. "
                    "Some factory links may not be recognized."
                ),
                details={"methods": self.factory_methods},
            ))
            return []
        if not text:
            return []

        lines = LineIndex(text)
        references: list[Reference] = []

        for call in self._pattern.finditer(text):
            factory_token_start = call.start(2)
            factory_token_end = call.end(2)
            factory_name = call.group(2)[1:]

            factory = self.cache.get_factory(factory_name)
            if factory is not None:
                references.append(Reference(
                    source_span=_span(lines, factory_token_start, factory_token_end),
                    kind=ReferenceKind.FACTORY,
                    target=factory.location,
                ))

            symbols = call.group(1)
            symbols_start = call.start(1)
            consumed = factory_token_end - symbols_start
            for token in TRAIT_REFERENCE_PATTERN.finditer(symbols, consumed):
                trait = self.cache.get_trait(factory_name, token.group(1))
                if trait is None:
                    continue
                references.append(Reference(
                    source_span=_span(
                        lines, symbols_start + token.start(), symbols_start + token.end(),
                    ),
                    kind=ReferenceKind.TRAIT,
                    target=trait.location,
                    context_factory_name=factory_name,
                ))

        return references


def _span(lines: LineIndex, start: int, end: int) -> SourceSpan:
    line, column = lines.position(start)
    return SourceSpan(start=start, end=end, line=line, column=column)
