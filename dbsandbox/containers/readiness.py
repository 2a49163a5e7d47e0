"""
Readiness predicates.

A container counts as ready once a regular expression has matched its log
output a minimum number of times, within an overall timeout.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Pattern


@dataclass(frozen=True)
class ReadinessPredicate:
    """
    Log based readiness condition.

    Attributes:
        pattern: Regular expression searched in every log line
        occurrences: Number of matching lines required
        timeout: Seconds to wait before giving up
    """
    pattern: str
    occurrences: int = 1
    timeout: float = 60.0
    _compiled: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.occurrences < 1:
            raise ValueError("occurrences must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def count(self, lines: Iterable[str]) -> int:
        """Count the log lines matching the pattern."""
        return sum(1 for line in lines if self._compiled.search(line))

    def is_satisfied(self, lines: Iterable[str]) -> bool:
        return self.count(lines) >= self.occurrences
