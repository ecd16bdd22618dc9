"""
Substitution transforms for attribute mappings.

A transform is written as ``s/pattern/replacement/flags`` with JavaScript
regular expression conventions (the console stores them that way). The
trailing slash is optional and ``\\/`` escapes a literal slash.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple, Union

from ..exceptions import TransformSyntaxError

logger = logging.getLogger(__name__)

SUPPORTED_FLAGS = "gimsuy"

_FLAG_BITS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}

# JavaScript named groups "(?<name>" but not lookbehind "(?<=" / "(?<!"
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")

# Replacement template pieces: literal text, numbered group, named group,
# or one of the special "$`" / "$'" / "$&" tokens.
_Piece = Tuple[str, Union[str, int]]


class Transform(ABC):
    """A value transformation attached to an attribute mapping."""

    @abstractmethod
    def apply(self, value: Any) -> Any:
        """Transform ``value``; non-string values pass through unchanged."""
        pass


class PassThrough(Transform):
    """Identity transform, used for empty or unusable transform strings."""

    def apply(self, value: Any) -> Any:
        return value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PassThrough)

    def __hash__(self) -> int:
        return hash(PassThrough)

    def __repr__(self) -> str:
        return "PassThrough()"


class RegexSubstitution(Transform):
    """
    Regular expression substitution.

    Without the ``g`` flag only the first match is replaced. With ``y`` a
    match must start exactly where the previous one ended (position 0 for
    the first match).
    """

    def __init__(self, pattern: str, replacement: str, flags: str = ""):
        self.pattern = pattern
        self.replacement = replacement
        self.flags = flags
        self.global_ = "g" in flags
        self.sticky = "y" in flags

        bits = 0
        for flag in flags:
            bits |= _FLAG_BITS.get(flag, 0)

        self._regex = re.compile(_JS_NAMED_GROUP.sub("(?P<", pattern), bits)
        self._template = _parse_replacement(replacement, self._regex)

    def apply(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value

        parts: List[str] = []
        position = 0
        for match in self._regex.finditer(value):
            if self.sticky and match.start() != position:
                break
            parts.append(value[position:match.start()])
            parts.append(self._expand(match, value))
            position = match.end()
            if not self.global_:
                break

        if not parts:
            return value

        parts.append(value[position:])
        return "".join(parts)

    def _expand(self, match: "re.Match[str]", value: str) -> str:
        out = []
        for kind, arg in self._template:
            if kind == "text":
                out.append(arg)
            elif kind == "group":
                out.append(match.group(arg) or "")
            elif kind == "whole":
                out.append(match.group(0))
            elif kind == "before":
                out.append(value[:match.start()])
            elif kind == "after":
                out.append(value[match.end():])
        return "".join(out)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, RegexSubstitution)
            and (self.pattern, self.replacement, self.flags)
            == (other.pattern, other.replacement, other.flags)
        )

    def __hash__(self) -> int:
        return hash((self.pattern, self.replacement, self.flags))

    def __repr__(self) -> str:
        return f"RegexSubstitution({self.pattern!r}, {self.replacement!r}, {self.flags!r})"


def parse_transform(text: Optional[str], strict: bool = False) -> Transform:
    """
    Parse a transform string.

    Args:
        text: Transform string such as ``s/[^0-9]//g``; empty means none
        strict: Raise on malformed input instead of falling back

    Returns:
        The parsed Transform. In lenient mode a malformed string yields
        PassThrough and a warning is logged.

    Raises:
        TransformSyntaxError: If ``strict`` and the string is malformed
    """
    if text is None or not text.strip():
        return PassThrough()

    try:
        pattern, replacement, flags = _split_substitution(text.strip())
        return RegexSubstitution(pattern, replacement, flags)
    except (TransformSyntaxError, re.error) as e:
        if strict:
            if isinstance(e, TransformSyntaxError):
                raise
            raise TransformSyntaxError(f"Invalid regular expression in {text!r}: {e}") from e
        logger.warning(f"Ignoring malformed transform {text!r}: {e}")
        return PassThrough()


def _split_substitution(text: str) -> Tuple[str, str, str]:
    """Split ``s/pattern/replacement/flags`` into its three parts."""
    if not text.startswith("s/"):
        raise TransformSyntaxError(f"Unsupported transform {text!r}: expected s/pattern/replacement/flags")

    parts = [""]
    i = 2
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            following = text[i + 1]
            # "\/" is a literal slash; other escapes belong to the regex
            parts[-1] += "/" if following == "/" else char + following
            i += 2
            continue
        if char == "/":
            parts.append("")
        else:
            parts[-1] += char
        i += 1

    if len(parts) < 2:
        raise TransformSyntaxError(f"Transform {text!r} has no replacement part")
    if len(parts) > 3:
        raise TransformSyntaxError(f"Transform {text!r} has too many '/' separators")

    pattern, replacement = parts[0], parts[1]
    flags = parts[2] if len(parts) == 3 else ""

    for flag in flags:
        if flag not in SUPPORTED_FLAGS:
            raise TransformSyntaxError(f"Unknown flag {flag!r} in transform {text!r}")
    if len(set(flags)) != len(flags):
        raise TransformSyntaxError(f"Duplicate flag in transform {text!r}")

    return pattern, replacement, flags


def _parse_replacement(replacement: str, regex: "re.Pattern[str]") -> List[_Piece]:
    """Compile a JavaScript-style replacement string into template pieces."""
    pieces: List[_Piece] = []
    literal = ""
    i = 0

    def flush() -> None:
        nonlocal literal
        if literal:
            pieces.append(("text", literal))
            literal = ""

    while i < len(replacement):
        char = replacement[i]
        following = replacement[i + 1] if i + 1 < len(replacement) else ""

        if char != "$" or not following:
            literal += char
            i += 1
            continue

        if following == "$":
            literal += "$"
            i += 2
        elif following == "&":
            flush()
            pieces.append(("whole", 0))
            i += 2
        elif following == "`":
            flush()
            pieces.append(("before", 0))
            i += 2
        elif following == "'":
            flush()
            pieces.append(("after", 0))
            i += 2
        elif following.isdigit():
            two = replacement[i + 1:i + 3]
            if len(two) == 2 and two.isdigit() and 0 < int(two) <= regex.groups:
                flush()
                pieces.append(("group", int(two)))
                i += 3
            elif 0 < int(following) <= regex.groups:
                flush()
                pieces.append(("group", int(following)))
                i += 2
            else:
                literal += char
                i += 1
        elif following == "<" and regex.groupindex:
            end = replacement.find(">", i + 2)
            if end == -1:
                literal += char
                i += 1
                continue
            name = replacement[i + 2:end]
            flush()
            if name in regex.groupindex:
                pieces.append(("group", name))
            i = end + 1
        else:
            literal += char
            i += 1

    flush()
    return pieces
