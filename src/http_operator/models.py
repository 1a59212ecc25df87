"""Pydantic models for HTTP request resources.

These models provide:
1. The canonical desired-state spec shared by every resource scope
2. The persisted status record with stable camelCase field names
3. Validation at the boundary (fail fast, fail loudly)
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# Actions
# =============================================================================


class Action(str, Enum):
    """Abstract actions a mapping can be bound to."""

    CREATE = "CREATE"
    OBSERVE = "OBSERVE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def _missing_(cls, value: object) -> Action | None:
        # REMOVE is the spelling used by older manifests
        if isinstance(value, str):
            normalized = value.upper()
            if normalized == "REMOVE":
                return cls.DELETE
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_mutating(self) -> bool:
        return self is not Action.OBSERVE


# Method each action falls back to when a mapping does not name its action
DEFAULT_ACTION_METHODS: dict[Action, str] = {
    Action.CREATE: "POST",
    Action.OBSERVE: "GET",
    Action.UPDATE: "PUT",
    Action.DELETE: "DELETE",
}


# =============================================================================
# Durations
# =============================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float | None:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style strings like "5m", "1m30s"
    or "250ms".
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                raise ValueError(f"invalid duration: {value!r}")
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos == 0 or pos != len(text):
            try:
                seconds = float(text)
            except ValueError as e:
                raise ValueError(f"invalid duration: {value!r}") from e
    else:
        raise ValueError(f"invalid duration: {value!r}")

    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


# =============================================================================
# Desired state
# =============================================================================


class Mapping(BaseModel):
    """Request template bound to one action."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    action: Action | None = None
    method: str
    url: str = ""
    body: str = ""
    headers: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("method must not be empty")
        return v.strip().upper()


class Payload(BaseModel):
    """Template inputs shared by all mappings."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    base_url: str = Field("", alias="baseUrl")
    body: str = ""


class ResponseCheck(BaseModel):
    """Response predicate configuration.

    ``type`` is kept as a plain string so an unknown kind surfaces as a
    ConfigurationError when predicates are built, not as a schema error.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    type: str = ""
    logic: str = ""


class SecretRef(BaseModel):
    """Identity of a secret in the secret store."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    name: str = Field(min_length=1)
    namespace: str | None = None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


class SecretInjectionConfig(BaseModel):
    """Copies one response field into one secret key."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    secret_ref: SecretRef = Field(alias="secretRef")
    secret_key: str = Field(alias="secretKey", min_length=1)
    response_path: str = Field(alias="responsePath", min_length=1)


class ResourceSpec(BaseModel):
    """Desired state of an HTTP-managed resource (``spec.forProvider``)."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    mappings: list[Mapping] = Field(default_factory=list)
    payload: Payload = Field(default_factory=Payload)
    headers: dict[str, list[str]] = Field(default_factory=dict)

    expected_response_check: ResponseCheck = Field(
        default_factory=ResponseCheck, alias="expectedResponseCheck"
    )
    is_removed_check: ResponseCheck = Field(default_factory=ResponseCheck, alias="isRemovedCheck")

    secret_injection_configs: list[SecretInjectionConfig] = Field(
        default_factory=list, alias="secretInjectionConfigs"
    )

    # Durations are stored in seconds
    wait_timeout: float | None = Field(None, alias="waitTimeout")
    next_reconcile: float | None = Field(None, alias="nextReconcile")

    insecure_skip_tls_verify: bool = Field(False, alias="insecureSkipTLSVerify")
    rollback_retries_limit: int | None = Field(None, alias="rollbackRetriesLimit", ge=0)
    should_loop_infinitely: bool = Field(False, alias="shouldLoopInfinitely")

    @field_validator("wait_timeout", "next_reconcile", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> float | None:
        return parse_duration(v)

    @model_validator(mode="after")
    def validate_unique_actions(self) -> ResourceSpec:
        seen: set[Action] = set()
        for mapping in self.mappings:
            if mapping.action is None:
                continue
            if mapping.action in seen:
                raise ValueError(f"duplicate mapping for action {mapping.action.value}")
            seen.add(mapping.action)
        return self


class DisposableRequestSpec(BaseModel):
    """Desired state of a one-shot request (``spec.forProvider``).

    The request is sent until it succeeds once; ``shouldLoopInfinitely``
    sends it again every ``nextReconcile``. ``expectedResponse`` is a filter
    expression the response must satisfy to count as a success.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    url: str = Field(min_length=1)
    method: str
    headers: dict[str, list[str]] = Field(default_factory=dict)
    body: str = ""
    expected_response: str = Field("", alias="expectedResponse")

    secret_injection_configs: list[SecretInjectionConfig] = Field(
        default_factory=list, alias="secretInjectionConfigs"
    )

    wait_timeout: float | None = Field(None, alias="waitTimeout")
    next_reconcile: float | None = Field(None, alias="nextReconcile")

    insecure_skip_tls_verify: bool = Field(False, alias="insecureSkipTLSVerify")
    rollback_retries_limit: int | None = Field(None, alias="rollbackRetriesLimit", ge=0)
    should_loop_infinitely: bool = Field(False, alias="shouldLoopInfinitely")

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("method must not be empty")
        return v.strip().upper()

    @field_validator("wait_timeout", "next_reconcile", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> float | None:
        return parse_duration(v)

    def to_resource_spec(self) -> ResourceSpec:
        """Express the request as a spec with a single CREATE mapping."""
        check = ResponseCheck()
        if self.expected_response.strip():
            check = ResponseCheck(type="CUSTOM", logic=self.expected_response)
        return ResourceSpec(
            mappings=[
                Mapping(
                    action=Action.CREATE,
                    method=self.method,
                    url=self.url,
                    body=self.body,
                    headers=self.headers,
                )
            ],
            expected_response_check=check,
            secret_injection_configs=self.secret_injection_configs,
            wait_timeout=self.wait_timeout,
            next_reconcile=self.next_reconcile,
            insecure_skip_tls_verify=self.insecure_skip_tls_verify,
            rollback_retries_limit=self.rollback_retries_limit,
            should_loop_infinitely=self.should_loop_infinitely,
        )


# =============================================================================
# Observed state
# =============================================================================


def parse_body(body: str) -> Any:
    """Parse a body as JSON, returning the raw string when it is not JSON."""
    if not body:
        return body
    try:
        return json.loads(body)
    except ValueError:
        return body


class RequestDetails(BaseModel):
    """A fully rendered request, echoed into status after dispatch."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    method: str = ""
    url: str = ""
    body: str = ""
    headers: dict[str, list[str]] = Field(default_factory=dict)


class HttpResponse(BaseModel):
    """A received HTTP response. Never mutated after receipt."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    status_code: int = Field(0, alias="statusCode")
    body: str = ""
    headers: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def to_context(self) -> dict[str, Any]:
        """Document view of the response with the body parsed when JSON."""
        return {
            "statusCode": self.status_code,
            "headers": self.headers,
            "body": parse_body(self.body),
        }


class Cache(BaseModel):
    """Most recently received response and when it was received."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    last_updated: str = Field("", alias="lastUpdated")
    response: HttpResponse = Field(default_factory=HttpResponse)


class Status(BaseModel):
    """Persisted status. The only long-lived state of a resource.

    Frozen: the status tracker returns a new value rather than mutating.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    response: HttpResponse = Field(default_factory=HttpResponse)
    cache: Cache = Field(default_factory=Cache)
    failed: int = Field(0, ge=0)
    error: str = ""
    synced: bool = False
    request_details: RequestDetails = Field(default_factory=RequestDetails, alias="requestDetails")
    last_reconcile_time: str = Field("", alias="lastReconcileTime")

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the persisted camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Canonical resource
# =============================================================================


class Resource(BaseModel):
    """Scope-independent view of one resource that the engine operates on.

    ``namespace`` is None for cluster-scoped resources.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    name: str = Field(min_length=1)
    namespace: str | None = None
    spec: ResourceSpec
    status: Status = Field(default_factory=Status)

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def with_status(self, status: Status) -> Resource:
        return self.model_copy(update={"status": status})
