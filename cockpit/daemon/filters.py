"""Regex ignore filter for watched paths."""

import re
from pathlib import Path
from typing import Iterable, List, Pattern, Union

from loguru import logger


class IgnoreFilter:
    """
    Drops paths matching any of a set of regular expressions.

    Patterns are compiled once. A pattern that fails to compile is left out
    of the effective set; config loading is where bad patterns get rejected.
    Matching is a regex search anywhere in the path string, not a glob.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self._patterns: List[Pattern[str]] = []
        for raw in patterns:
            try:
                self._patterns.append(re.compile(raw))
            except re.error as e:
                logger.debug(f"Dropping invalid ignore pattern {raw!r}: {e}")

    @property
    def patterns(self) -> List[str]:
        """Source text of the effective patterns."""
        return [p.pattern for p in self._patterns]

    def should_ignore(self, path: Union[str, Path]) -> bool:
        path_str = str(path)
        return any(p.search(path_str) for p in self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)
