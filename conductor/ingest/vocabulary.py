"""Keyword tables for command parsing.

Built once at import into read-only structures: tuples for ordered sweeps,
``MappingProxyType`` for lookups. Patterns are matched case-insensitively
with a leading word boundary so inflections ("running", "checks") match.
"""

from __future__ import annotations

import re
from types import MappingProxyType

from conductor.models import IntentType, TestType


def _words(*alternatives: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(alternatives) + ")", re.IGNORECASE)


# Sweep order matters: the first detected intent is the primary intent.
INTENT_PATTERNS: tuple[tuple[IntentType, re.Pattern[str]], ...] = (
    (IntentType.RUN_TESTS, _words("run", "execute", "start", "launch")),
    (IntentType.ANALYZE_FAILURES, _words("analy[sz]e", "investigate", "debug", "examine")),
    (IntentType.GENERATE_TESTS, _words("generate", "create", "write", "build")),
    (IntentType.OPTIMIZE_TESTS, _words("optimi[sz]e", "improve", "enhance", "tune")),
    (IntentType.HEALTH_CHECK, _words("health", "check", "monitor")),
    (IntentType.GET_STATUS, _words("status", "state", "info", "details")),
    (IntentType.HELP, _words("help", "assist", "support", "guide")),
)

DEFAULT_INTENT: IntentType = IntentType.RUN_TESTS

SERVICE_ALIASES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("user-service", _words("users?", "auth", "login")),
    ("product-service", _words("products?", "catalog", "inventory")),
    ("order-service", _words("orders?", "payments?", "transactions?")),
    ("notification-service", _words("notifications?", "email", "sms")),
    ("gateway-service", _words("gateway", "api", "proxy", "router")),
)

ALL_SERVICES_PATTERN: re.Pattern[str] = _words(
    r"all\s+services", "everything", "entire", r"every\s+service"
)

# Phrases that mention two services loosely ("user ... order") select both.
SERVICE_COMBINATIONS: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (
        re.compile(r"\buser.*\border", re.IGNORECASE),
        ("user-service", "order-service"),
    ),
    (
        re.compile(r"\bproduct.*\border", re.IGNORECASE),
        ("product-service", "order-service"),
    ),
)

TEST_TYPE_PATTERNS: tuple[tuple[TestType, re.Pattern[str]], ...] = (
    (TestType.UNIT_TEST, _words("unit")),
    (TestType.INTEGRATION_TEST, _words("integration")),
    (TestType.API_TEST, _words(r"api\s+tests?", r"rest\b", "endpoint")),
    (TestType.PERFORMANCE_TEST, _words("performance", "load", "stress", "benchmark")),
    (TestType.SECURITY_TEST, _words("security", "vulnerabilit")),
    (TestType.PENETRATION_TEST, _words("penetration", "pentest")),
    (TestType.CHAOS_TEST, _words("chaos", "resilience", r"failure\s+injection")),
    (TestType.CONTRACT_TEST, _words("contract", "pact", "agreement")),
    (TestType.END_TO_END_TEST, _words("e2e", r"end[\s-]to[\s-]end")),
    (TestType.SMOKE_TEST, _words("smoke", "basic", "quick", "sanity")),
    (TestType.REGRESSION_TEST, _words("regression")),
    (TestType.EXPLORATORY_TEST, _words("exploratory", "ad-hoc", "manual")),
    (TestType.ACCESSIBILITY_TEST, _words("accessibility", "a11y", "wcag")),
    (TestType.COMPATIBILITY_TEST, _words("compatibility", "cross-platform", "browser")),
    (TestType.LOCALIZATION_TEST, _words("locali[sz]ation", "i18n", "internationali[sz]ation")),
)

TEST_TYPE_COMBINATIONS: tuple[tuple[re.Pattern[str], tuple[TestType, ...]], ...] = (
    (
        re.compile(r"\bunit\b.*\bintegration|\bintegration\b.*\bunit", re.IGNORECASE),
        (TestType.UNIT_TEST, TestType.INTEGRATION_TEST),
    ),
    (
        re.compile(r"\bapi\b.*\bperformance|\bperformance\b.*\bapi", re.IGNORECASE),
        (TestType.API_TEST, TestType.PERFORMANCE_TEST),
    ),
)

# Fallback when no test type is named, first match wins.
TEST_TYPE_INFERENCE: tuple[tuple[re.Pattern[str], tuple[TestType, ...]], ...] = (
    (_words("user", "auth", "login"), (TestType.UNIT_TEST, TestType.SECURITY_TEST)),
    (
        _words("order", "payment", "transaction"),
        (TestType.INTEGRATION_TEST, TestType.API_TEST),
    ),
    (_words("performance", "load", "stress"), (TestType.PERFORMANCE_TEST,)),
    (_words("chaos", "failure", "resilience"), (TestType.CHAOS_TEST,)),
)

DEFAULT_TEST_TYPES: tuple[TestType, ...] = (
    TestType.UNIT_TEST,
    TestType.INTEGRATION_TEST,
)

# --- Parameter classifiers: ordered (value, pattern); first match wins ---

Classifier = tuple[tuple[str, re.Pattern[str]], ...]

PRIORITY_LEVELS: Classifier = (
    ("HIGH", _words(r"high\s+priority", "urgent", "critical")),
    ("LOW", _words(r"low\s+priority", "background")),
)

SCOPE_LEVELS: Classifier = (
    ("FULL", _words("full", "complete", "comprehensive")),
    ("PARTIAL", _words("partial", "limited", "subset")),
)

ENVIRONMENTS: Classifier = (
    ("PRODUCTION", _words("production", r"prod\b")),
    ("STAGING", _words("staging", r"stage\b")),
    ("DEVELOPMENT", _words("development", r"dev\b")),
)

INTENSITY_LEVELS: Classifier = (
    ("LOW", _words("low", "minimal", "light")),
    ("HIGH", _words("high", "maximum", "heavy", "intense")),
)

PARALLEL_PATTERN: re.Pattern[str] = _words("parallel", "concurrent", "simultaneous")
CHAOS_MENTION: re.Pattern[str] = _words("chaos")
LOAD_MENTION: re.Pattern[str] = _words("load", "stress")

TIMEOUT_TRIGGER: re.Pattern[str] = _words("timeout", r"time\s+limit", "within")
DURATION_PATTERN: re.Pattern[str] = re.compile(
    r"(\d+)\s*(hours?|hrs?|h\b|minutes?|mins?|m\b|seconds?|secs?|s\b)",
    re.IGNORECASE,
)
RETRIES_PATTERN: re.Pattern[str] = re.compile(
    r"(\d+)\s*retr(?:y|ies)\b|\bretry\s*(\d+)\s*times?", re.IGNORECASE
)

# --- Situational context classifiers ---

URGENCY_LEVELS: Classifier = (
    ("HIGH", _words("urgent", "asap", "immediate(?:ly)?", r"now\b")),
    ("LOW", _words(r"when\s+possible", "eventually", "later")),
)

CONTEXT_SCOPES: Classifier = (
    ("COMPREHENSIVE", _words(r"all\b", "everything", "entire", "complete", "comprehensive")),
    ("TARGETED", _words("specific", "particular", "targeted")),
)

CONTEXT_PRIORITIES: Classifier = (
    ("HIGH", _words(r"high\s+priority", "critical", "important")),
    ("LOW", _words(r"low\s+priority", "background", "optional")),
)

TIMING_LEVELS: Classifier = (
    ("SCHEDULED", _words("schedule", "later", "tomorrow", r"next\s+week")),
)

EXECUTION_MODES: Classifier = (
    ("DRY_RUN", _words(r"dry[\s-]run", "simulation", r"test\s+mode")),
    ("PRODUCTION", _words("production", r"live\b")),
)

CONSTRAINTS: Classifier = (
    ("NO_DOWNTIME", _words(r"no\s+downtime", r"zero[\s-]downtime")),
    ("MINIMAL_IMPACT", _words(r"minimal\s+impact", r"low\s+impact")),
    ("SAFE_MODE", _words(r"safe\s+mode", "safely", "carefully")),
)

# Hours are folded into minutes; the output unit suffix is "m" or "s".
DURATION_UNITS: MappingProxyType[str, tuple[int, str]] = MappingProxyType({
    "h": (60, "m"),
    "m": (1, "m"),
    "s": (1, "s"),
})
