"""Response predicates for drift detection.

A response check is a tagged variant: DEFAULT (status-code based) or
CUSTOM (filter expression). Each variant exposes a single ``evaluate``
operation so the drift evaluator never branches on the configured kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .config import ConfigurationError
from .expression import ExpressionError, evaluate
from .models import HttpResponse, Payload, ResponseCheck, parse_body

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class PredicateEvaluationError(Exception):
    """Raised when a CUSTOM check cannot be evaluated.

    Distinct from a check that evaluates to false.
    """

    pass


class CheckKind(str, Enum):
    """Supported response check kinds."""

    DEFAULT = "DEFAULT"
    CUSTOM = "CUSTOM"


class ResponsePredicate(Protocol):
    """Boolean rule over a received response."""

    def evaluate(self, response: HttpResponse) -> bool: ...


def build_response_context(
    response: HttpResponse, payload: Payload | None = None
) -> dict[str, Any]:
    """Build the document CUSTOM expressions are evaluated against.

    Top-level ``statusCode``, ``headers`` and ``body`` describe the response;
    ``response`` repeats them and ``payload`` exposes the desired payload so
    checks can compare the two.
    """
    context = response.to_context()
    context["response"] = response.to_context()
    if payload is not None:
        context["payload"] = {"baseUrl": payload.base_url, "body": parse_body(payload.body)}
    return context


@dataclass(frozen=True)
class SuccessStatusPredicate:
    """DEFAULT up-to-date check: status in 200..299."""

    def evaluate(self, response: HttpResponse) -> bool:
        return response.is_success


@dataclass(frozen=True)
class NotFoundStatusPredicate:
    """DEFAULT removal check: status 404."""

    def evaluate(self, response: HttpResponse) -> bool:
        return response.status_code == HTTP_NOT_FOUND


@dataclass(frozen=True)
class ExpressionPredicate:
    """CUSTOM check evaluated by the filter expression language."""

    logic: str
    payload: Payload | None = None

    def evaluate(self, response: HttpResponse) -> bool:
        context = build_response_context(response, self.payload)
        try:
            result = evaluate(self.logic, context)
        except ExpressionError as e:
            raise PredicateEvaluationError(f"failed to evaluate {self.logic!r}: {e}") from e

        if not isinstance(result, bool):
            raise PredicateEvaluationError(
                f"expression {self.logic!r} must return a boolean, got {result!r}"
            )
        logger.debug("Custom check evaluated", extra={"logic": self.logic, "result": result})
        return result


def _build(
    check: ResponseCheck,
    field_name: str,
    default: ResponsePredicate,
    payload: Payload | None,
) -> ResponsePredicate:
    kind = check.type.strip()
    if not kind or kind == CheckKind.DEFAULT.value:
        return default
    if kind == CheckKind.CUSTOM.value:
        if not check.logic.strip():
            raise ConfigurationError(f"{field_name}.logic is required when type is CUSTOM")
        return ExpressionPredicate(logic=check.logic, payload=payload)
    raise ConfigurationError(f"{field_name}.type should be either DEFAULT, CUSTOM or empty")


def up_to_date_predicate(check: ResponseCheck, payload: Payload | None = None) -> ResponsePredicate:
    """Build the predicate for ``expectedResponseCheck``.

    Raises:
        ConfigurationError: If the check kind is unknown.
    """
    return _build(check, "expectedResponseCheck", SuccessStatusPredicate(), payload)


def removed_predicate(check: ResponseCheck, payload: Payload | None = None) -> ResponsePredicate:
    """Build the predicate for ``isRemovedCheck``.

    Raises:
        ConfigurationError: If the check kind is unknown.
    """
    return _build(check, "isRemovedCheck", NotFoundStatusPredicate(), payload)
