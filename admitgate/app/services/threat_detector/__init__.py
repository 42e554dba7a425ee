"""Pattern threat detector package.

- models.py: ThreatCategory and compiled rule type
- patterns.py: Built-in signature tables
- service.py: ThreatDetector
"""

from admitgate.app.services.threat_detector.models import ThreatCategory, ThreatRule
from admitgate.app.services.threat_detector.patterns import (
    BUILTIN_PATTERNS,
    INJECTION_PATTERNS,
    PATH_TRAVERSAL_PATTERNS,
    SCRIPT_INJECTION_PATTERNS,
)
from admitgate.app.services.threat_detector.service import ThreatDetector, compile_rules

__all__ = [
    "ThreatCategory",
    "ThreatRule",
    "BUILTIN_PATTERNS",
    "INJECTION_PATTERNS",
    "SCRIPT_INJECTION_PATTERNS",
    "PATH_TRAVERSAL_PATTERNS",
    "ThreatDetector",
    "compile_rules",
]
