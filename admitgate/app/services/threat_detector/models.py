"""Threat detector models."""
import re
from dataclasses import dataclass
from enum import Enum


class ThreatCategory(str, Enum):
    """Attack class a fragment can be classified into.

    Declaration order is the order categories are reported in.
    """
    INJECTION = "injection"
    SCRIPT_INJECTION = "script_injection"
    PATH_TRAVERSAL = "path_traversal"


@dataclass(frozen=True)
class ThreatRule:
    """A compiled pattern rule belonging to one category."""
    category: ThreatCategory
    pattern: re.Pattern
    description: str = ""

    def matches(self, fragment: str) -> bool:
        return self.pattern.search(fragment) is not None
