"""Drift detection for the observe action.

Per observe call the evaluator ends in one of:

- ``Observation(exists=False)``: the resource has not been created yet, so
  the caller should create it
- ``Observation(exists=True, up_to_date=...)``
- ``ResourceRemovedError``: the removal check fired on an existing resource
- ``ObservationFailedError``: render, transport or predicate failure

Configuration problems (unknown check kind, missing observe mapping) raise
before any request is rendered or sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .data_patcher import SecretPatcher
from .mapping import get_mapping
from .models import Action, HttpResponse, RequestDetails, Resource, Status
from .predicates import PredicateEvaluationError, removed_predicate, up_to_date_predicate
from .render import RequestRenderer, TemplateRenderError
from .transport import HttpTransport, TransportError, dispatch

logger = logging.getLogger(__name__)


class ResourceRemovedError(Exception):
    """Raised when the removal check reports an existing resource as gone."""

    def __init__(self, request: RequestDetails, response: HttpResponse) -> None:
        self.request = request
        self.response = response
        super().__init__(f"resource removed: {request.method} {request.url} -> {response.status_code}")


class ObservationFailedError(Exception):
    """Hard failure of an observe call.

    Carries the request that was dispatched (if any) and the response that
    was received (if any) so the failure can be recorded in status. The
    underlying error is ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        request: RequestDetails | None = None,
        response: HttpResponse | None = None,
    ) -> None:
        self.request = request
        self.response = response
        super().__init__(message)


@dataclass(frozen=True)
class Observation:
    """Result of drift evaluation for an observe call."""

    exists: bool
    up_to_date: bool = False
    request: RequestDetails | None = None
    response: HttpResponse | None = None


NOT_FOUND = Observation(exists=False)


def object_not_created(status: Status) -> bool:
    """Whether the resource has never been confirmed to exist.

    True when no response was ever recorded, or when the last request was a
    create (POST) that ended in an HTTP error status.
    """
    if status.response.status_code == 0:
        return True
    return status.request_details.method == "POST" and status.response.is_error


class DriftEvaluator:
    """Decides whether an observed resource exists and is up to date."""

    def __init__(
        self,
        renderer: RequestRenderer,
        transport: HttpTransport,
        patcher: SecretPatcher,
        default_timeout: float,
    ) -> None:
        self._renderer = renderer
        self._transport = transport
        self._patcher = patcher
        self._default_timeout = default_timeout

    async def evaluate(self, resource: Resource) -> Observation:
        """Run one observation.

        Raises:
            ConfigurationError: If a response check kind is invalid.
            NoMappingError: If there is no observe mapping.
            ResourceRemovedError: If the removal check fires.
            ObservationFailedError: On render, transport or predicate failure.
        """
        spec = resource.spec
        is_up_to_date = up_to_date_predicate(spec.expected_response_check, spec.payload)
        is_removed = removed_predicate(spec.is_removed_check, spec.payload)
        mapping = get_mapping(spec, Action.OBSERVE)

        not_created = object_not_created(resource.status)

        try:
            request = await self._renderer.render(resource, mapping)
        except TemplateRenderError as e:
            if not_created:
                # Templates typically reference data from the create response
                logger.info(
                    "Observe request not renderable before creation, reporting not found",
                    extra={"resource": resource.key, "error": str(e)},
                )
                return NOT_FOUND
            raise ObservationFailedError(f"failed to render observe request: {e}") from e

        timeout = spec.wait_timeout or self._default_timeout
        try:
            response = await dispatch(
                self._transport, request, spec.insecure_skip_tls_verify, timeout
            )
        except TransportError as e:
            if not_created:
                return NOT_FOUND
            raise ObservationFailedError(str(e), request=request) from e

        # The first observation requires a successful response to count as existing
        if not_created and not response.is_success:
            logger.info(
                "Resource not found before creation",
                extra={"resource": resource.key, "status_code": response.status_code},
            )
            return NOT_FOUND

        try:
            removed = is_removed.evaluate(response)
        except PredicateEvaluationError as e:
            raise ObservationFailedError(str(e), request=request, response=response) from e

        await self._patcher.apply(resource, response)

        if removed:
            logger.info(
                "Removal check fired",
                extra={"resource": resource.key, "status_code": response.status_code},
            )
            raise ResourceRemovedError(request, response)

        try:
            up_to_date = is_up_to_date.evaluate(response)
        except PredicateEvaluationError as e:
            raise ObservationFailedError(str(e), request=request, response=response) from e

        return Observation(exists=True, up_to_date=up_to_date, request=request, response=response)
