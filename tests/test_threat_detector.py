"""Tests for the pattern threat detector."""

import time

import pytest

from admitgate.app.exceptions import ConfigurationError
from admitgate.app.core.config import Settings
from admitgate.app.services.models import Violation
from admitgate.app.services.threat_detector import ThreatCategory, ThreatDetector


@pytest.fixture(scope="module")
def detector():
    return ThreatDetector()


class TestInjection:
    """Injection signatures."""

    @pytest.mark.parametrize(
        "fragment",
        [
            "' OR '1'='1",
            "admin' OR '1'='1' --",
            "x' or 'a'='a",
            "1 UNION SELECT username, password FROM users",
            "1; DROP TABLE users;--",
            "DELETE FROM accounts",
            "insert into logs values",
            "update users set role",
            "exec xp_cmdshell 'dir'",
            "sp_executesql",
            "name/* comment */",
        ],
    )
    def test_detects_injection(self, detector, fragment):
        """Known injection idioms are classified as injection."""
        assert ThreatCategory.INJECTION in detector.classify(fragment)

    def test_case_insensitive(self, detector):
        """Keyword rules ignore case."""
        assert ThreatCategory.INJECTION in detector.classify("uNiOn aLl SeLeCt 1")

    def test_tautology_embedded_in_longer_text(self, detector):
        """The tautology is found anywhere in the fragment."""
        fragment = "search term " + "' OR '1'='1" + " trailing"
        assert ThreatCategory.INJECTION in detector.classify(fragment)

    def test_keywords_too_far_apart_do_not_pair(self, detector):
        """Statement keyword pairs are only matched within a bounded gap."""
        fragment = "select" + " x" * 200 + " from"
        assert ThreatCategory.INJECTION not in detector.classify(fragment)


class TestScriptInjection:
    """Script injection signatures."""

    @pytest.mark.parametrize(
        "fragment",
        [
            "<script>alert(1)</script>",
            "<SCRIPT src=//evil.example>",
            "javascript:alert(document.cookie)",
            "<img src=x onerror=alert(1)>",
            "<body onload = steal()>",
            "<iframe src=//evil.example>",
            "<object data=x>",
        ],
    )
    def test_detects_script_injection(self, detector, fragment):
        assert ThreatCategory.SCRIPT_INJECTION in detector.classify(fragment)

    def test_script_in_context(self, detector):
        """Script tags inside other text are still found."""
        fragment = "hello <script>alert(1)</script> world"
        assert ThreatCategory.SCRIPT_INJECTION in detector.classify(fragment)


class TestPathTraversal:
    """Path traversal signatures."""

    @pytest.mark.parametrize(
        "fragment",
        [
            "../../etc/passwd",
            "..\\..\\windows\\win.ini",
            "%2e%2e%2f%2e%2e%2fetc%2fpasswd",
            "%2E%2E%2Fetc%2Fpasswd",
            "..%2f..%2fetc%2fpasswd",
            "%2e%2e/etc/passwd",
            "%252e%252e%252fetc%252fpasswd",
            "/var/www/..",
        ],
    )
    def test_detects_traversal(self, detector, fragment):
        assert ThreatCategory.PATH_TRAVERSAL in detector.classify(fragment)

    def test_single_dot_segments_are_clean(self, detector):
        assert detector.classify("./images/logo.png") == frozenset()

    def test_file_extension_dots_are_clean(self, detector):
        assert detector.classify("/static/app.v2.min.js") == frozenset()


class TestCleanFragments:
    """Benign input yields no categories."""

    def test_empty_fragment(self, detector):
        assert detector.classify("") == frozenset()

    @pytest.mark.parametrize(
        "fragment",
        ["hello", "abc123", "Selection2024", "information", "ONION", "123456789", "x"],
    )
    def test_alphanumeric_fragments(self, detector, fragment):
        assert detector.classify(fragment) == frozenset()

    def test_ordinary_path(self, detector):
        assert detector.classify("/api/v1/orders/42") == frozenset()


class TestMultipleCategories:
    """Fragments that match several categories report all of them."""

    def test_reports_every_category(self, detector):
        fragment = "../../etc/passwd' OR '1'='1 <script>alert(1)</script>"
        assert detector.classify(fragment) == frozenset(
            {
                ThreatCategory.INJECTION,
                ThreatCategory.SCRIPT_INJECTION,
                ThreatCategory.PATH_TRAVERSAL,
            }
        )


class TestScan:
    """Tests for scan over (source, text) pairs."""

    def test_violations_follow_input_and_category_order(self, detector):
        violations = detector.scan([
            ("path", "/files/../../etc/passwd"),
            ("field:q", "1; DROP TABLE users;--"),
            ("field:name", "alice"),
            ("header:x-note", "<script>x</script>' or 1=1"),
        ])
        assert violations == [
            Violation.threat("path", ThreatCategory.PATH_TRAVERSAL),
            Violation.threat("field:q", ThreatCategory.INJECTION),
            Violation.threat("header:x-note", ThreatCategory.INJECTION),
            Violation.threat("header:x-note", ThreatCategory.SCRIPT_INJECTION),
        ]

    def test_clean_fields_produce_no_violations(self, detector):
        assert detector.scan([("path", "/ok"), ("field:a", "b")]) == []


class TestBoundedEvaluation:
    """Adversarial input must not cause runaway backtracking."""

    @pytest.mark.parametrize(
        "fragment",
        [
            "or " + "a" * 50_000,
            "union " * 10_000,
            "select " + "x " * 20_000,
            "<" + " " * 50_000,
            "." * 50_000,
        ],
    )
    def test_long_adversarial_fragments_finish_quickly(self, detector, fragment):
        start = time.perf_counter()
        detector.classify(fragment)
        assert time.perf_counter() - start < 2.0


class TestConfiguration:
    """Rule table construction."""

    def test_bad_pattern_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ThreatDetector({ThreatCategory.INJECTION: [("(unclosed", "broken")]})

    def test_custom_table_replaces_builtins(self):
        detector = ThreatDetector({ThreatCategory.INJECTION: [(r"\bforbidden\b", "custom")]})
        assert detector.classify("FORBIDDEN") == frozenset({ThreatCategory.INJECTION})
        assert detector.classify("<script>") == frozenset()

    def test_extra_patterns_from_settings(self):
        settings = Settings(_env_file=None, extra_threat_patterns={"script_injection": [r"vbs:"]})
        detector = ThreatDetector.from_settings(settings)
        assert ThreatCategory.SCRIPT_INJECTION in detector.classify("VBS:run")
        # Built-ins stay active
        assert ThreatCategory.PATH_TRAVERSAL in detector.classify("../../etc/passwd")

    def test_unknown_category_in_settings(self):
        settings = Settings(_env_file=None, extra_threat_patterns={"xxe": [r"<!entity"]})
        with pytest.raises(ConfigurationError):
            ThreatDetector.from_settings(settings)

    def test_non_compiling_extra_pattern(self):
        settings = Settings(_env_file=None, extra_threat_patterns={"injection": ["[a-"]})
        with pytest.raises(ConfigurationError):
            ThreatDetector.from_settings(settings)
