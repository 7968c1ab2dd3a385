import re
from typing import Optional

from mergewatch.exceptions import ConfigError

# Inline flags like (?i) apply to the whole pattern and must stay in front
_GLOBAL_FLAGS = re.compile(r"((?:\(\?[aiLmsux]+\))*)(.*)", re.DOTALL)


def compile_trigger(pattern: str) -> "re.Pattern[str]":
    """
    Compile ``pattern`` so it has to match a whole line. Raises ``re.error``
    for invalid patterns.
    """
    flags, rest = _GLOBAL_FLAGS.fullmatch(pattern).groups()
    return re.compile(f"{flags}^(?:{rest})$", re.MULTILINE)


class TriggerMatcher:
    """
    Looks for the merge trigger on a line of its own. The pattern is compiled
    once; each line of the text has to match it in full.
    """

    pattern: str
    regex: "re.Pattern[str]"

    def __init__(self, pattern: str):
        self.pattern = pattern
        try:
            self.regex = compile_trigger(pattern)
        except re.error as e:
            raise ConfigError(f"Invalid trigger pattern {pattern!r}: {e}") from e

    def matches(self, text: Optional[str]) -> bool:
        if not text:
            return False
        return self.regex.search(text.replace("\r\n", "\n")) is not None

    def __repr__(self) -> str:
        return f"TriggerMatcher({self.pattern!r})"


def matches(text: Optional[str], pattern: str) -> bool:
    return TriggerMatcher(pattern).matches(text)
