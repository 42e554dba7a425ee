"""Pattern threat detector.

Classifies text fragments against categorized attack signatures. Rule tables
are compiled once at construction and never mutated, so a single detector is
shared by every concurrent request.
"""
from __future__ import annotations

import re
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from admitgate.app.core.logging import get_logger
from admitgate.app.exceptions import ConfigurationError
from admitgate.app.services.models import Violation
from admitgate.app.services.threat_detector.models import ThreatCategory, ThreatRule
from admitgate.app.services.threat_detector.patterns import BUILTIN_PATTERNS

logger = get_logger(__name__)


def compile_rules(
    category: ThreatCategory,
    patterns: Iterable[Tuple[str, str]],
) -> Tuple[ThreatRule, ...]:
    """Compile (pattern, description) pairs into case-insensitive rules.

    Raises:
        ConfigurationError: If any pattern fails to compile
    """
    rules = []
    for pattern_str, description in patterns:
        try:
            pattern = re.compile(pattern_str, re.IGNORECASE)
        except re.error as e:
            raise ConfigurationError(
                f"pattern {pattern_str!r} does not compile: {e}",
                setting=f"threat_patterns.{category.value}",
            ) from e
        rules.append(ThreatRule(category=category, pattern=pattern, description=description))
    return tuple(rules)


class ThreatDetector:
    """Stateless classifier of request fragments.

    Usage:
        detector = ThreatDetector.from_settings(settings)
        detector.classify("1 UNION SELECT password FROM users")
        # frozenset({ThreatCategory.INJECTION})
    """

    def __init__(
        self,
        patterns: Optional[Mapping[ThreatCategory, Sequence[Tuple[str, str]]]] = None,
    ) -> None:
        """Compile the rule tables.

        Args:
            patterns: Per-category (pattern, description) pairs; defaults to
                the built-in signatures
        """
        source = BUILTIN_PATTERNS if patterns is None else patterns
        self._rules: Dict[ThreatCategory, Tuple[ThreatRule, ...]] = {
            category: compile_rules(category, source.get(category, ()))
            for category in ThreatCategory
        }

    @classmethod
    def from_settings(cls, settings) -> "ThreatDetector":
        """Build a detector from the built-in table plus configured extras."""
        patterns: Dict[ThreatCategory, List[Tuple[str, str]]] = {
            category: list(rules) for category, rules in BUILTIN_PATTERNS.items()
        }
        for name, extras in settings.extra_threat_patterns.items():
            try:
                category = ThreatCategory(name)
            except ValueError as e:
                raise ConfigurationError(
                    f"unknown threat category {name!r}",
                    setting="extra_threat_patterns",
                ) from e
            patterns[category].extend((p, "configured") for p in extras)
        detector = cls(patterns)
        logger.info(
            "Threat rules loaded",
            extra={"rule_counts": {c.value: n for c, n in detector.rule_counts().items()}},
        )
        return detector

    def rule_counts(self) -> Dict[ThreatCategory, int]:
        return {category: len(rules) for category, rules in self._rules.items()}

    def classify(self, fragment: str) -> FrozenSet[ThreatCategory]:
        """Return every category with at least one matching rule.

        The fragment must already be percent-decoded; encoded forms that
        survive decoding are what the encoded-form rules look for.
        """
        if not fragment:
            return frozenset()
        found = set()
        for category, rules in self._rules.items():
            if any(rule.matches(fragment) for rule in rules):
                found.add(category)
        return frozenset(found)

    def scan(self, fragments: Iterable[Tuple[str, str]]) -> List[Violation]:
        """Classify (source, text) pairs and return violations in input order.

        Categories for one source are reported in declaration order.
        """
        violations: List[Violation] = []
        for source, text in fragments:
            found = self.classify(text)
            for category in ThreatCategory:
                if category in found:
                    violations.append(Violation.threat(source, category))
        return violations
