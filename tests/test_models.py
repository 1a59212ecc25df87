"""Tests for resource and status models."""

import pytest
from pydantic import ValidationError

from http_operator.models import (
    Action,
    DisposableRequestSpec,
    HttpResponse,
    Mapping,
    Resource,
    ResourceSpec,
    SecretRef,
    Status,
    parse_body,
    parse_duration,
)


class TestAction:
    """Tests for Action parsing."""

    def test_case_insensitive(self) -> None:
        """Test lowercase action names."""
        assert Action("observe") is Action.OBSERVE

    def test_remove_alias(self) -> None:
        """Test that REMOVE maps to DELETE."""
        assert Action("REMOVE") is Action.DELETE

    def test_unknown_action(self) -> None:
        """Test that unknown actions are rejected."""
        with pytest.raises(ValueError):
            Action("PATCH")

    def test_is_mutating(self) -> None:
        """Test that only OBSERVE is read-only."""
        assert not Action.OBSERVE.is_mutating
        assert all(a.is_mutating for a in (Action.CREATE, Action.UPDATE, Action.DELETE))


class TestParseDuration:
    """Tests for duration parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (30, 30.0),
            (1.5, 1.5),
            ("45", 45.0),
            ("10s", 10.0),
            ("5m", 300.0),
            ("1m30s", 90.0),
            ("1h", 3600.0),
            ("250ms", 0.25),
            (None, None),
            ("", None),
        ],
    )
    def test_valid(self, value: object, expected: float | None) -> None:
        """Test accepted duration forms."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["abc", "5x", "m5", "-3", True, [1]])
    def test_invalid(self, value: object) -> None:
        """Test rejected duration forms."""
        with pytest.raises(ValueError):
            parse_duration(value)


class TestResourceSpec:
    """Tests for ResourceSpec validation."""

    def test_camel_case_fields(self) -> None:
        """Test parsing manifest field names."""
        spec = ResourceSpec.model_validate(
            {
                "mappings": [{"action": "CREATE", "method": "post", "url": "https://a"}],
                "payload": {"baseUrl": "https://a", "body": "{}"},
                "expectedResponseCheck": {"type": "CUSTOM", "logic": ".statusCode == 200"},
                "isRemovedCheck": {"type": "DEFAULT"},
                "secretInjectionConfigs": [
                    {
                        "secretRef": {"name": "creds", "namespace": "team-a"},
                        "secretKey": "token",
                        "responsePath": ".body.token",
                    }
                ],
                "waitTimeout": "2m",
                "nextReconcile": 15,
                "insecureSkipTLSVerify": True,
                "rollbackRetriesLimit": 3,
                "shouldLoopInfinitely": True,
            }
        )

        assert spec.mappings[0].method == "POST"
        assert spec.payload.base_url == "https://a"
        assert spec.expected_response_check.type == "CUSTOM"
        assert spec.secret_injection_configs[0].secret_ref.namespace == "team-a"
        assert spec.wait_timeout == 120.0
        assert spec.next_reconcile == 15.0
        assert spec.insecure_skip_tls_verify is True
        assert spec.rollback_retries_limit == 3
        assert spec.should_loop_infinitely is True

    def test_defaults(self) -> None:
        """Test that an empty spec is valid."""
        spec = ResourceSpec()
        assert spec.mappings == []
        assert spec.wait_timeout is None
        assert spec.rollback_retries_limit is None

    def test_duplicate_action_rejected(self) -> None:
        """Test that two mappings for one action are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            ResourceSpec.model_validate(
                {
                    "mappings": [
                        {"action": "CREATE", "method": "POST"},
                        {"action": "CREATE", "method": "PUT"},
                    ]
                }
            )

        assert "duplicate mapping for action CREATE" in str(exc_info.value)

    def test_negative_retry_limit_rejected(self) -> None:
        """Test rollbackRetriesLimit bounds."""
        with pytest.raises(ValidationError):
            ResourceSpec.model_validate({"rollbackRetriesLimit": -1})

    def test_empty_method_rejected(self) -> None:
        """Test that a mapping needs a method."""
        with pytest.raises(ValidationError):
            Mapping(method="  ")


class TestDisposableRequestSpec:
    """Tests for one-shot request specs."""

    def test_to_resource_spec(self) -> None:
        """Test that the request becomes a CREATE mapping with a CUSTOM check."""
        spec = DisposableRequestSpec.model_validate(
            {
                "url": "https://example-url",
                "method": "post",
                "body": "{}",
                "headers": {"Accept": ["application/json"]},
                "expectedResponse": '.body.job_status == "success"',
                "nextReconcile": "1m",
                "shouldLoopInfinitely": True,
            }
        ).to_resource_spec()

        assert spec.mappings == [
            Mapping(
                action=Action.CREATE,
                method="POST",
                url="https://example-url",
                body="{}",
                headers={"Accept": ["application/json"]},
            )
        ]
        assert spec.expected_response_check.type == "CUSTOM"
        assert spec.expected_response_check.logic == '.body.job_status == "success"'
        assert spec.next_reconcile == 60.0
        assert spec.should_loop_infinitely is True

    def test_without_expected_response(self) -> None:
        """Test that an empty expectedResponse leaves the check unset."""
        spec = DisposableRequestSpec(url="https://example-url", method="GET").to_resource_spec()

        assert spec.expected_response_check.type == ""

    def test_url_required(self) -> None:
        """Test that url must not be empty."""
        with pytest.raises(ValidationError):
            DisposableRequestSpec(url="", method="GET")


class TestStatus:
    """Tests for the persisted status record."""

    def test_serializes_camel_case(self) -> None:
        """Test the persisted field names."""
        data = Status().to_dict()

        assert set(data) == {
            "response",
            "cache",
            "failed",
            "error",
            "synced",
            "requestDetails",
            "lastReconcileTime",
        }
        assert data["response"] == {"statusCode": 0, "body": "", "headers": {}}
        assert set(data["cache"]) == {"lastUpdated", "response"}
        assert set(data["requestDetails"]) == {"method", "url", "body", "headers"}

    def test_round_trip(self) -> None:
        """Test that a serialized status parses back to an equal value."""
        status = Status.model_validate(
            {
                "response": {"statusCode": 201, "body": '{"id": "1"}', "headers": {"A": ["b"]}},
                "failed": 2,
                "error": "boom",
                "synced": False,
                "requestDetails": {"method": "POST", "url": "https://a"},
                "lastReconcileTime": "2024-01-01T00:00:00Z",
            }
        )
        assert Status.model_validate(status.to_dict()) == status

    def test_frozen(self) -> None:
        """Test that status values cannot be mutated."""
        status = Status()
        with pytest.raises(ValidationError):
            status.failed = 3  # type: ignore[misc]


class TestHttpResponse:
    """Tests for HttpResponse helpers."""

    def test_classification(self) -> None:
        """Test success and error ranges."""
        assert HttpResponse(status_code=204).is_success
        assert not HttpResponse(status_code=302).is_success
        assert not HttpResponse(status_code=302).is_error
        assert HttpResponse(status_code=404).is_error

    def test_context_parses_json(self) -> None:
        """Test that JSON bodies are parsed for expressions."""
        context = HttpResponse(status_code=200, body='{"a": [1]}').to_context()
        assert context["body"] == {"a": [1]}

    def test_parse_body_leaves_text(self) -> None:
        """Test that non-JSON bodies stay strings."""
        assert parse_body("not json") == "not json"
        assert parse_body("") == ""


class TestResource:
    """Tests for the canonical resource."""

    def test_key(self) -> None:
        """Test namespaced and cluster-scoped keys."""
        spec = ResourceSpec()
        assert Resource(name="a", namespace="ns", spec=spec).key == "ns/a"
        assert Resource(name="a", spec=spec).key == "a"

    def test_with_status(self) -> None:
        """Test that with_status returns a new resource."""
        resource = Resource(name="a", spec=ResourceSpec())
        updated = resource.with_status(Status(failed=1))

        assert updated.status.failed == 1
        assert resource.status.failed == 0

    def test_secret_ref_str(self) -> None:
        """Test SecretRef rendering."""
        assert str(SecretRef(name="creds", namespace="ns")) == "ns/creds"
        assert str(SecretRef(name="creds")) == "creds"
