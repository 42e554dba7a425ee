"""Built-in threat signatures.

Gaps between keywords are bounded (``{0,100}``) and no quantified group
contains another unbounded quantifier, so a search is linear in the fragment
length for this table.
"""
from typing import Dict, List, Tuple

from admitgate.app.services.threat_detector.models import ThreatCategory

# Longest run of arbitrary characters allowed between two keywords
KEYWORD_GAP = 100

_GAP = r"[\s\S]{0,%d}?" % KEYWORD_GAP

INJECTION_PATTERNS: List[Tuple[str, str]] = [
    (r"\bunion\b" + _GAP + r"\bselect\b", "union select"),
    (
        r"\b(?:select|insert|update|delete|drop)\b" + _GAP + r"\b(?:from|into|set|table)\b",
        "statement keyword pair",
    ),
    (
        r"\bor\b\s{0,10}['\"]?\s{0,10}\w{1,64}\s{0,10}['\"]?\s{0,10}=\s{0,10}['\"]?\s{0,10}\w{1,64}",
        "boolean tautology",
    ),
    (r"['\";]|%27|%22|%3b", "quote or statement separator"),
    (r"--|#|%23|/\*|\*/", "comment marker"),
    (r"\bexec(?:ute)?\s{1,10}(?:xp|sp)_\w+", "stored procedure invocation"),
    (r"\b(?:xp|sp)_\w+", "stored procedure prefix"),
]

SCRIPT_INJECTION_PATTERNS: List[Tuple[str, str]] = [
    (r"<\s{0,10}/?\s{0,10}script\b", "script tag"),
    (r"\b(?:java|vb)script\s{0,10}:", "script URI"),
    (r"\bon[a-z]{1,32}\s{0,10}=", "inline event handler"),
    (r"<\s{0,10}(?:iframe|object|embed)\b", "embedded frame or object"),
]

PATH_TRAVERSAL_PATTERNS: List[Tuple[str, str]] = [
    (r"\.\.[/\\]", "parent directory segment"),
    (
        r"(?:\.|%2e|%252e)(?:\.|%2e|%252e)(?:/|\\|%2f|%5c|%252f|%255c)",
        "encoded parent directory segment",
    ),
    (r"[/\\]\.\.$", "trailing parent directory"),
]

BUILTIN_PATTERNS: Dict[ThreatCategory, List[Tuple[str, str]]] = {
    ThreatCategory.INJECTION: INJECTION_PATTERNS,
    ThreatCategory.SCRIPT_INJECTION: SCRIPT_INJECTION_PATTERNS,
    ThreatCategory.PATH_TRAVERSAL: PATH_TRAVERSAL_PATTERNS,
}
