"""Reconcile orchestrator.

Composes mapping, rendering, transport, drift detection, secret patching
and status tracking into the action flows the outer scheduler calls:

    observe -> Drift Evaluator -> Status Tracker
    create / update / delete -> Action Mapper -> Request Renderer
        -> HTTP transport -> Secret Patcher -> Status Tracker
    dispatch_once -> same send path, gated by synced / retry limit / loop

Each call takes a resource snapshot and returns a new Status to persist.
Fatal failures raise ActionFailedError *after* the failure has been
recorded; the new status travels on the exception so the caller can still
persist the evidence (counter, message, last request).

There is no retry loop here. Retrying is the scheduler's decision, made on
its next poll.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .config import OperatorConfig
from .data_patcher import SecretPatcher
from .drift import DriftEvaluator, ObservationFailedError, ResourceRemovedError
from .mapping import NoMappingError, get_mapping
from .models import Action, HttpResponse, Mapping, RequestDetails, Resource, Status
from .predicates import PredicateEvaluationError, up_to_date_predicate
from .render import RequestRenderer, TemplateRenderError
from .secret_store import SecretStore
from .status import CallOutcome, StatusTracker, parse_timestamp
from .transport import HttpTransport, TransportError, dispatch

logger = logging.getLogger(__name__)

ERR_OBSERVE_FAILED = "failed to check if request is up to date"
ERR_ACTION_FAILED = "failed to send {action} request"
ERR_STATUS_CODE = "HTTP {method} request failed with status code: {status_code}"
ERR_UNEXPECTED_RESPONSE = "response does not match expectedResponse: {expression}"


class ActionFailedError(Exception):
    """A reconcile call failed after its status was recorded.

    Attributes:
        action: The action that failed.
        status: The status to persist for this call.
    """

    def __init__(self, action: Action, status: Status, cause: BaseException) -> None:
        self.action = action
        self.status = status
        if action.is_mutating:
            prefix = ERR_ACTION_FAILED.format(action=action.value.lower())
        else:
            prefix = ERR_OBSERVE_FAILED
        super().__init__(f"{prefix}: {cause}")


class RetryLimitExceededError(Exception):
    """Raised by the default retry-limit handler; nothing is dispatched."""

    def __init__(self, resource: Resource, action: Action, limit: int) -> None:
        self.resource_key = resource.key
        self.action = action
        self.limit = limit
        super().__init__(
            f"{action.value} for {resource.key} not attempted: "
            f"{resource.status.failed} failures reached rollbackRetriesLimit {limit}"
        )


class HttpStatusError(Exception):
    """A mutating request answered with a non-2xx status."""

    def __init__(self, method: str, status_code: int) -> None:
        self.method = method
        self.status_code = status_code
        super().__init__(ERR_STATUS_CODE.format(method=method, status_code=status_code))


class UnexpectedResponseError(Exception):
    """A one-shot request's response did not satisfy ``expectedResponse``."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        super().__init__(ERR_UNEXPECTED_RESPONSE.format(expression=expression))


RetryLimitHandler = Callable[[Resource, Action], None]


def halt_on_retry_limit(resource: Resource, action: Action) -> None:
    """Default handler: stop sending once rollbackRetriesLimit failures accrued."""
    limit = resource.spec.rollback_retries_limit
    raise RetryLimitExceededError(resource, action, limit if limit is not None else 0)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile call.

    ``exists``/``up_to_date``/``removed`` are meaningful for observe;
    ``dispatched`` is False when nothing was sent (no mapping for a mutating
    action, or a one-shot request that is already settled).
    """

    action: Action
    status: Status
    exists: bool = True
    up_to_date: bool = False
    removed: bool = False
    dispatched: bool = True


class Reconciler:
    """Runs single reconcile calls against resource snapshots.

    Holds no per-resource state: independent resources may be reconciled
    concurrently. Calls for the same resource must be serialized by the
    caller.
    """

    def __init__(
        self,
        transport: HttpTransport,
        secret_store: SecretStore,
        config: OperatorConfig | None = None,
        retry_limit_handler: RetryLimitHandler = halt_on_retry_limit,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or OperatorConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._transport = transport
        self._renderer = RequestRenderer(secret_store)
        self._patcher = SecretPatcher(secret_store)
        self._tracker = StatusTracker(self._clock)
        self._drift = DriftEvaluator(
            renderer=self._renderer,
            transport=transport,
            patcher=self._patcher,
            default_timeout=self._config.default_wait_timeout_seconds,
        )
        self._retry_limit_handler = retry_limit_handler

    @property
    def config(self) -> OperatorConfig:
        return self._config

    async def observe(self, resource: Resource) -> ReconcileResult:
        """Observe the external resource.

        Returns exists=False (status untouched) when the resource has not
        been created yet or the removal check fired; otherwise records the
        observation and reports whether it is up to date.

        Raises:
            ConfigurationError: If a response check kind is invalid.
            NoMappingError: If there is no observe mapping.
            ActionFailedError: On render, transport or predicate failure.
        """
        try:
            observation = await self._drift.evaluate(resource)
        except ResourceRemovedError:
            return ReconcileResult(
                action=Action.OBSERVE, status=resource.status, exists=False, removed=True
            )
        except ObservationFailedError as e:
            cause = e.__cause__ or e
            outcome = CallOutcome(request=e.request, response=e.response, error=cause)
            raise self._fail(resource, Action.OBSERVE, outcome) from cause

        if not observation.exists:
            return ReconcileResult(action=Action.OBSERVE, status=resource.status, exists=False)

        status = self._tracker.record(
            resource.status,
            CallOutcome(
                request=observation.request,
                response=observation.response,
                synced=observation.up_to_date,
            ),
        )
        self._log_call(resource, Action.OBSERVE, status)
        return ReconcileResult(
            action=Action.OBSERVE,
            status=status,
            exists=True,
            up_to_date=observation.up_to_date,
        )

    async def create(self, resource: Resource) -> ReconcileResult:
        return await self._deploy(resource, Action.CREATE)

    async def update(self, resource: Resource) -> ReconcileResult:
        return await self._deploy(resource, Action.UPDATE)

    async def delete(self, resource: Resource) -> ReconcileResult:
        return await self._deploy(resource, Action.DELETE)

    async def dispatch_once(self, resource: Resource) -> ReconcileResult:
        """Send a one-shot request unless an earlier attempt settled it.

        The request (the CREATE mapping) is sent when it was never sent,
        when a failed attempt is still under ``rollbackRetriesLimit``, or
        when a looping resource's ``nextReconcile`` has elapsed since its
        last successful send. A synced resource that does not loop, and a
        failed one without a retry limit, are left alone.

        A response of 400 or above is recorded and raised. A response that
        does not satisfy ``expectedResponse`` is recorded as a failure but
        not raised.

        Raises:
            NoMappingError: If the resource has no CREATE mapping.
            RetryLimitExceededError: From the default retry-limit handler.
            ActionFailedError: On render, transport, HTTP status or
                ``expectedResponse`` evaluation failure.
        """
        action = Action.CREATE
        spec = resource.spec
        if not self._due(resource):
            logger.debug(
                "One-shot request already settled",
                extra={
                    "resource": resource.key,
                    "synced": resource.status.synced,
                    "failed": resource.status.failed,
                },
            )
            return ReconcileResult(
                action=action,
                status=resource.status,
                up_to_date=resource.status.synced,
                dispatched=False,
            )

        mapping = get_mapping(spec, action)
        if resource.status.failed:
            self._check_retry_limit(resource, action)

        request, response = await self._send(resource, action, mapping)

        if response.is_error:
            error = HttpStatusError(request.method, response.status_code)
            outcome = CallOutcome(request=request, response=response, error=error)
            raise self._fail(resource, action, outcome) from error

        expected = True
        check = spec.expected_response_check
        if check.type.strip():
            try:
                expected = up_to_date_predicate(check, spec.payload).evaluate(response)
            except PredicateEvaluationError as e:
                outcome = CallOutcome(request=request, response=response, error=e)
                raise self._fail(resource, action, outcome) from e

        error = None if expected else UnexpectedResponseError(check.logic)
        status = self._tracker.record(
            resource.status,
            CallOutcome(request=request, response=response, error=error, synced=expected),
        )
        self._log_call(resource, action, status, error=error)
        return ReconcileResult(action=action, status=status, up_to_date=expected)

    async def _deploy(self, resource: Resource, action: Action) -> ReconcileResult:
        """Run a mutating action.

        A missing mapping is a logged no-op. A non-2xx response is recorded
        as a failure but not raised; the next observe classifies it.

        Raises:
            RetryLimitExceededError: From the default retry-limit handler.
            ActionFailedError: On render or transport failure.
        """
        try:
            mapping = get_mapping(resource.spec, action)
        except NoMappingError as e:
            logger.info(str(e), extra={"resource": resource.key, "action": action.value})
            return ReconcileResult(action=action, status=resource.status, dispatched=False)

        self._check_retry_limit(resource, action)

        request, response = await self._send(resource, action, mapping)

        error = None
        if not response.is_success:
            error = HttpStatusError(request.method, response.status_code)
        status = self._tracker.record(
            resource.status,
            CallOutcome(request=request, response=response, error=error, synced=error is None),
        )
        self._log_call(resource, action, status, error=error)
        return ReconcileResult(action=action, status=status, up_to_date=error is None)

    async def _send(
        self, resource: Resource, action: Action, mapping: Mapping
    ) -> tuple[RequestDetails, HttpResponse]:
        """Render and dispatch a mutating request, then inject secrets.

        Raises:
            ActionFailedError: On render or transport failure, once recorded.
        """
        try:
            request = await self._renderer.render(resource, mapping)
        except TemplateRenderError as e:
            raise self._fail(resource, action, CallOutcome(error=e)) from e

        spec = resource.spec
        timeout = spec.wait_timeout or self._config.default_wait_timeout_seconds
        try:
            response = await dispatch(
                self._transport, request, spec.insecure_skip_tls_verify, timeout
            )
        except TransportError as e:
            raise self._fail(resource, action, CallOutcome(request=request, error=e)) from e

        await self._patcher.apply(resource, response)
        return request, response

    def _check_retry_limit(self, resource: Resource, action: Action) -> None:
        limit = resource.spec.rollback_retries_limit
        if limit is None or resource.status.failed < limit:
            return
        logger.warning(
            "Retry limit reached",
            extra={
                "resource": resource.key,
                "action": action.value,
                "failed": resource.status.failed,
                "limit": limit,
            },
        )
        self._retry_limit_handler(resource, action)

    def _due(self, resource: Resource) -> bool:
        status = resource.status
        if status.synced:
            interval = self.requeue_after(resource)
            if interval is None:
                return False
            last = parse_timestamp(status.last_reconcile_time)
            return last is None or self._clock() - last >= timedelta(seconds=interval)
        if status.failed:
            # Without a retry limit a failed one-shot request is not resent
            return resource.spec.rollback_retries_limit is not None
        return True

    def _fail(
        self, resource: Resource, action: Action, outcome: CallOutcome
    ) -> ActionFailedError:
        """Record a fatal outcome and build the error carrying the new status."""
        status = self._tracker.record(resource.status, outcome)
        self._log_call(resource, action, status, error=outcome.error)
        return ActionFailedError(action, status, outcome.error)

    def requeue_after(self, resource: Resource) -> float | None:
        """Seconds until the next reconcile for looping resources, else None."""
        spec = resource.spec
        if not spec.should_loop_infinitely:
            return None
        return spec.next_reconcile or self._config.default_next_reconcile_seconds

    def _log_call(
        self,
        resource: Resource,
        action: Action,
        status: Status,
        error: BaseException | None = None,
    ) -> None:
        extra = {
            "resource": resource.key,
            "action": action.value,
            "status_code": status.response.status_code,
            "synced": status.synced,
            "failed": status.failed,
        }
        if error is not None:
            extra["error"] = str(error)
            logger.warning("Reconcile call failed", extra=extra)
        else:
            logger.info("Reconcile call finished", extra=extra)
