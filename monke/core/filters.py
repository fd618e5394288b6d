"""Strip markup that should never be read aloud from model output."""

from __future__ import annotations

import re

_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_STAGE_DIRECTION = re.compile(r"\*[^*]+\*")
_DOUBLE_UNDERSCORE = re.compile(r"__([^_]+)__")
_UNDERSCORE = re.compile(r"_([^_]+)_")
_INLINE_CODE = re.compile(r"(?<!`)`([^`]+)`(?!`)")
_CODE_BLOCK = re.compile(r"```[^`]*```")
_HEADING = re.compile(r"^[ \t]*(?:#+[ \t]*)+", re.MULTILINE)
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_WHITESPACE = re.compile(r"\s+")


def filter_response(text: str) -> str:
    """Return ``text`` as it should be spoken.

    The steps repeat until a pass changes nothing, so nested markup such as
    ``**bold *nested* text**`` leaves no stray markers behind.

    >>> filter_response("Hello! *waves excitedly* How are you?")
    'Hello! How are you?'
    >>> filter_response("Look at the **glowing star**!")
    'Look at the glowing star!'
    """
    if not text or not text.strip():
        return ""
    filtered = _single_pass(text)
    while True:
        again = _single_pass(filtered)
        if again == filtered:
            return filtered
        filtered = again


def _single_pass(text: str) -> str:
    # every step only removes characters or turns whitespace into spaces
    filtered = _BOLD.sub(r"\1", text)
    # Single-asterisk spans are stage directions: dropped with their content.
    filtered = _STAGE_DIRECTION.sub("", filtered)
    filtered = _DOUBLE_UNDERSCORE.sub(r"\1", filtered)
    filtered = _UNDERSCORE.sub(r"\1", filtered)
    filtered = _INLINE_CODE.sub(r"\1", filtered)
    filtered = _CODE_BLOCK.sub("", filtered)
    filtered = _HEADING.sub("", filtered)
    filtered = _LINK.sub(r"\1", filtered)
    return _WHITESPACE.sub(" ", filtered).strip()
