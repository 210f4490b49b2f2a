from __future__ import annotations

import logging
from typing import Sequence

from conductor.config import ConductorConfig
from conductor.ingest import vocabulary as vocab
from conductor.ingest.extractors import (
    extract_context,
    extract_parameters,
    normalize_text,
)
from conductor.models import IntentType, ParsedCommand, TestType

logger = logging.getLogger(__name__)

_INTENT_WEIGHT: float = 0.3
_SERVICE_WEIGHT: float = 0.3
_TEST_TYPE_WEIGHT: float = 0.3
_PARAMETER_WEIGHT: float = 0.1


def _append_unique(items: list, values: Sequence) -> None:
    for value in values:
        if value not in items:
            items.append(value)


class CommandParser:
    """Keyword/regex command parser.

    Each dimension (intents, services, test types, parameters, context) is an
    independent sweep over the normalized text. Empty dimensions are filled
    from defaults, and the names of default-filled dimensions are recorded on
    the result in ``defaulted``.

    ``parse`` never raises: an internal error yields an UNKNOWN command with
    zero confidence and the error message in ``parameters["error"]``.
    """

    def __init__(self, config: ConductorConfig | None = None) -> None:
        self._config = config or ConductorConfig()

    def parse(self, text: str | None) -> ParsedCommand:
        original = text if isinstance(text, str) else ""
        try:
            return self._parse(original)
        except Exception as exc:
            logger.error("Failed to parse command %r: %s", original, exc)
            return ParsedCommand(
                original_text=original,
                intents=(IntentType.UNKNOWN,),
                parameters={"error": str(exc)},
                confidence=0.0,
            )

    def _parse(self, original: str) -> ParsedCommand:
        text = normalize_text(original)
        defaulted: set[str] = set()

        intents = self.detect_intents(text)
        if not intents:
            intents = [vocab.DEFAULT_INTENT]
            defaulted.add("intents")

        services = self.detect_services(text)
        if not services:
            services = list(self._config.known_services)
            defaulted.add("services")

        test_types = self.detect_test_types(text)
        if not test_types:
            test_types = self.infer_test_types(text)
            if not test_types:
                test_types = list(vocab.DEFAULT_TEST_TYPES)
                defaulted.add("test_types")

        parameters = extract_parameters(text)
        context = extract_context(text)

        confidence = (
            (_INTENT_WEIGHT if intents else 0.0)
            + (_SERVICE_WEIGHT if services else 0.0)
            + (_TEST_TYPE_WEIGHT if test_types else 0.0)
            + (_PARAMETER_WEIGHT if parameters else 0.0)
        )

        command = ParsedCommand(
            original_text=original,
            intents=tuple(intents),
            services=tuple(services),
            test_types=tuple(test_types),
            parameters=parameters,
            context=context,
            confidence=min(confidence, 1.0),
            defaulted=frozenset(defaulted),
        )
        logger.debug(
            "Parsed %r: intents=%s services=%s test_types=%s defaulted=%s",
            original,
            [i.value for i in command.intents],
            list(command.services),
            [t.value for t in command.test_types],
            sorted(defaulted),
        )
        return command

    def detect_intents(self, text: str) -> list[IntentType]:
        return [intent for intent, pattern in vocab.INTENT_PATTERNS if pattern.search(text)]

    def detect_services(self, text: str) -> list[str]:
        known = list(self._config.known_services)
        if vocab.ALL_SERVICES_PATTERN.search(text):
            return known

        services: list[str] = []
        for service, pattern in vocab.SERVICE_ALIASES:
            if pattern.search(text):
                _append_unique(services, [service])
        for pattern, pair in vocab.SERVICE_COMBINATIONS:
            if pattern.search(text):
                _append_unique(services, pair)
        # Services named verbatim that have no alias entry
        for service in known:
            if service not in services and service in text.lower():
                services.append(service)
        return services

    def detect_test_types(self, text: str) -> list[TestType]:
        types = [t for t, pattern in vocab.TEST_TYPE_PATTERNS if pattern.search(text)]
        for pattern, combo in vocab.TEST_TYPE_COMBINATIONS:
            if pattern.search(text):
                _append_unique(types, combo)
        return types

    def infer_test_types(self, text: str) -> list[TestType]:
        """Infer test types from domain keywords when none are named."""
        for pattern, inferred in vocab.TEST_TYPE_INFERENCE:
            if pattern.search(text):
                return list(inferred)
        return []
