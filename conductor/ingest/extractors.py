from __future__ import annotations

import re
from typing import Any

from conductor.ingest import vocabulary as vocab
from conductor.models import SituationalContext


def classify(text: str, classifier: vocab.Classifier, default: str) -> str:
    """Return the first classifier value whose pattern matches, else ``default``."""
    for value, pattern in classifier:
        if pattern.search(text):
            return value
    return default


def extract_timeout(text: str) -> str | None:
    """Extract a timeout like "30m" or "45s" when the text names a time limit.

    Hours are folded into minutes ("2 hours" -> "120m").
    """
    if not vocab.TIMEOUT_TRIGGER.search(text):
        return None
    match = vocab.DURATION_PATTERN.search(text)
    if not match:
        return None
    multiplier, suffix = vocab.DURATION_UNITS[match.group(2)[0].lower()]
    return f"{int(match.group(1)) * multiplier}{suffix}"


def extract_retries(text: str) -> int | None:
    match = vocab.RETRIES_PATTERN.search(text)
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def extract_parameters(text: str) -> dict[str, Any]:
    """Extract execution parameters, independent of intent/service detection."""
    params: dict[str, Any] = {}

    timeout = extract_timeout(text)
    if timeout is not None:
        params["timeout"] = timeout

    retries = extract_retries(text)
    if retries is not None:
        params["retries"] = retries

    if vocab.PARALLEL_PATTERN.search(text):
        params["parallel"] = True

    params["priority"] = classify(text, vocab.PRIORITY_LEVELS, "NORMAL")
    params["scope"] = classify(text, vocab.SCOPE_LEVELS, "DEFAULT")
    params["environment"] = classify(text, vocab.ENVIRONMENTS, "DEFAULT")

    if vocab.CHAOS_MENTION.search(text):
        params["chaos_level"] = classify(text, vocab.INTENSITY_LEVELS, "MEDIUM")
    if vocab.LOAD_MENTION.search(text):
        params["load_level"] = classify(text, vocab.INTENSITY_LEVELS, "MEDIUM")

    return params


def extract_context(text: str) -> SituationalContext:
    return SituationalContext(
        urgency=classify(text, vocab.URGENCY_LEVELS, "NORMAL"),
        scope=classify(text, vocab.CONTEXT_SCOPES, "DEFAULT"),
        priority=classify(text, vocab.CONTEXT_PRIORITIES, "NORMAL"),
        timing=classify(text, vocab.TIMING_LEVELS, "IMMEDIATE"),
        constraints=tuple(
            name for name, pattern in vocab.CONSTRAINTS if pattern.search(text)
        ),
        execution_mode=classify(text, vocab.EXECUTION_MODES, "STANDARD"),
    )


def normalize_text(text: str | None) -> str:
    """Collapse whitespace; ``None`` becomes the empty string."""
    return re.sub(r"\s+", " ", text or "").strip()
