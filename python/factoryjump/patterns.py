"""Text patterns for factory/trait definitions and factory call sites.

All matchers work on raw text offsets; nothing here tokenizes Ruby.
"""

import re
from bisect import bisect_right

NAME = r"[a-zA-Z0-9_]+"

# Methods recognised as factory call sites unless configured otherwise
DEFAULT_FACTORY_METHODS = (
    "create",
    "create_list",
    "build",
    "build_list",
    "build_stubbed",
    "build_stubbed_list",
    "attributes_for",
    "attributes_for_list",
)

# `factory :name` with an optional explicit `parent: :other` anywhere in the
# header, which may continue over lines ending in a comma.
# A header without the leading colon is malformed and simply never matches.
FACTORY_DEFINITION_PATTERN = re.compile(
    rf"\bfactory\s+:(?P<name>{NAME})\b"
    rf"(?:(?:[^\n]|(?<=,)[ \t]*\n)*?\bparent(?::|\s*=>)\s*:(?P<parent>{NAME}))?"
)

# `<<~ID`, `<<-ID`, `<<'ID'` or a bare upper-case `<<ID`; the body starts on
# the next line and runs to the line holding only ID.
HEREDOC_START_PATTERN = re.compile(
    r"<<(?:[~-](?P<q1>['\"`]?)(?P<id1>[A-Za-z_]\w*)(?P=q1)"
    r"|(?P<q2>['\"`]?)(?P<id2>[A-Z_][A-Z0-9_]*)(?P=q2))"
)

TRAIT_DEFINITION_PATTERN = re.compile(rf"\btrait\s+:({NAME})\s+do\b")

# Factory name plus its body, non-greedy, up to the next sibling header or
# the terminating `end` of the text.
FACTORY_BLOCK_PATTERN = re.compile(
    rf"\bfactory\s+:({NAME})\b[^\n]*?\bdo\b([\s\S]*?)(?=\n\s*(?:factory\b|end\s*\Z))"
)

TRAIT_REFERENCE_PATTERN = re.compile(rf":({NAME})")

VALID_NAME_PATTERN = re.compile(rf"^{NAME}$")

# Block openers/closers used by the depth-tracking scanner. Keyword openers
# count at line start or right after an assignment (`x = if ...`); modifier
# forms (`foo if bar`) close nothing and are not counted.
BLOCK_TOKEN_PATTERN = re.compile(
    r"(?:^|=)[ \t]*(?P<keyword>class|module|def|if|unless|case|while|until|begin)\b(?!:)"
    r"|(?<![.:\w])(?P<do>do)\b(?!:)"
    r"|(?<![.:\w])(?P<end>end)\b(?!:)"
    r"|(?P<lbrace>\{)"
    r"|(?P<rbrace>\})",
    re.MULTILINE,
)


class PatternError(ValueError):
    """A matcher could not be built from its configuration."""


def is_valid_name(name: str) -> bool:
    return bool(VALID_NAME_PATTERN.match(name))


def build_call_pattern(methods=DEFAULT_FACTORY_METHODS) -> re.Pattern:
    """Build the call-site matcher for the given factory method names.

    Group 1 spans the symbol list (``:user, :admin``), group 2 the first
    symbol including its colon. Trailing non-symbol arguments are consumed
    up to the closing paren or the end of their line, but not captured.

    Raises:
        PatternError: if the method list is empty or holds an invalid name.
    """
    methods = list(methods or [])
    if not methods:
        raise PatternError("no factory methods configured")
    invalid = [m for m in methods if not isinstance(m, str) or not is_valid_name(m)]
    if invalid:
        raise PatternError(f"invalid factory method names: {invalid!r}")

    # Longest first so `create_list` is never shadowed by `create`
    alternatives = "|".join(
        re.escape(m) for m in sorted(set(methods), key=lambda m: (-len(m), m))
    )
    try:
        return re.compile(
            rf"\b(?:{alternatives})\s*(?:\(\s*)?"
            rf"((:{NAME})(?:\s*,\s*:{NAME})*)"
            r"\s*(?:,\s*[^)\n]*)?(?:\)|\n|$)"
        )
    except re.error as e:
        raise PatternError(str(e)) from e


def mask_comments_and_strings(text: str) -> str:
    """Blank out comments, quoted string contents and heredoc bodies,
    keeping every offset.

    Newlines are always preserved so line numbers computed on the masked
    text match the unmasked text. String state ends at a newline so a stray quote
    cannot swallow the rest of the file.
    """
    out = list(text)
    i = 0
    n = len(text)
    quote = None
    in_comment = False
    in_block_comment = False
    at_line_start = True
    heredocs: list[str] = []

    while i < n:
        ch = text[i]
        if ch == "\n":
            quote = None
            in_comment = False
            at_line_start = True
            i += 1
            if heredocs:
                i = _mask_heredoc_bodies(text, out, i, heredocs)
                heredocs = []
            continue

        if at_line_start:
            at_line_start = False
            if text.startswith("=begin", i):
                in_block_comment = True
            elif in_block_comment and text.startswith("=end", i):
                in_block_comment = False
                end = text.find("\n", i)
                end = n if end == -1 else end
                for j in range(i, end):
                    out[j] = " "
                i = end
                continue

        if in_block_comment or in_comment:
            out[i] = " "
        elif quote is not None:
            if ch == "\\" and i + 1 < n and text[i + 1] != "\n":
                out[i] = " "
                out[i + 1] = " "
                i += 2
                continue
            if ch == quote:
                quote = None
            else:
                out[i] = " "
        elif ch == "#":
            in_comment = True
            out[i] = " "
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "<":
            heredoc = HEREDOC_START_PATTERN.match(text, i)
            if heredoc:
                heredocs.append(heredoc.group("id1") or heredoc.group("id2"))
                i = heredoc.end()
                continue
        i += 1

    return "".join(out)


def _mask_heredoc_bodies(text: str, out: list[str], start: int, terminators: list[str]) -> int:
    """Blank whole lines from start until each terminator line in turn.

    Returns the offset of the first line after the last terminator.
    """
    n = len(text)
    i = start
    for terminator in terminators:
        while i < n:
            line_end = text.find("\n", i)
            line_end = n if line_end == -1 else line_end
            line = text[i:line_end]
            for j in range(i, line_end):
                out[j] = " "
            i = min(line_end + 1, n)
            if line.strip() == terminator:
                break
    return i


class LineIndex:
    """Converts absolute text offsets to 0-based (line, column)."""

    def __init__(self, text: str):
        self._starts = [0]
        self._starts.extend(m.end() for m in re.finditer("\n", text))

    def line_of(self, offset: int) -> int:
        """Number of newlines strictly before offset."""
        return bisect_right(self._starts, offset) - 1

    def position(self, offset: int) -> tuple[int, int]:
        line = self.line_of(offset)
        return line, offset - self._starts[line]
