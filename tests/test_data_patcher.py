"""Tests for copying response data into secrets."""

import logging

import pytest
from http_mock import RecordingSecretStore, make_resource, make_response

from http_operator.data_patcher import SecretPatcher


def injection(path: str, key: str = "token", name: str = "api-credentials", namespace=None):
    ref = {"name": name}
    if namespace is not None:
        ref["namespace"] = namespace
    return {"secretRef": ref, "secretKey": key, "responsePath": path}


class TestSecretPatcher:
    """Tests for SecretPatcher.apply."""

    @pytest.mark.asyncio
    async def test_writes_value(self) -> None:
        """Test that a response field is written to the secret."""
        store = RecordingSecretStore()
        resource = make_resource(secretInjectionConfigs=[injection(".body.token")])

        await SecretPatcher(store).apply(resource, make_response(200, {"token": "abc"}))

        assert store.snapshot() == {"default/api-credentials": {"token": "abc"}}

    @pytest.mark.asyncio
    async def test_explicit_namespace(self) -> None:
        """Test that a secret ref namespace is honoured."""
        store = RecordingSecretStore()
        resource = make_resource(
            namespace=None,
            secretInjectionConfigs=[injection(".body.token", namespace="shared")],
        )

        await SecretPatcher(store).apply(resource, make_response(200, {"token": "abc"}))

        assert store.snapshot() == {"shared/api-credentials": {"token": "abc"}}

    @pytest.mark.asyncio
    async def test_non_string_values_are_json(self) -> None:
        """Test that structured values are JSON encoded."""
        store = RecordingSecretStore()
        resource = make_resource(secretInjectionConfigs=[injection(".body.ids", key="ids")])

        await SecretPatcher(store).apply(resource, make_response(200, {"ids": [1, 2]}))

        assert store.snapshot()["default/api-credentials"]["ids"] == "[1, 2]"

    @pytest.mark.asyncio
    async def test_idempotent(self) -> None:
        """Test that applying twice writes once and leaves the value unchanged."""
        store = RecordingSecretStore()
        resource = make_resource(secretInjectionConfigs=[injection(".body.token")])
        response = make_response(200, {"token": "abc"})
        patcher = SecretPatcher(store)

        await patcher.apply(resource, response)
        await patcher.apply(resource, response)

        assert store.writes == [("default/api-credentials", "token", "abc")]
        assert store.snapshot()["default/api-credentials"]["token"] == "abc"

    @pytest.mark.asyncio
    async def test_absent_path_is_skipped(self) -> None:
        """Test that a missing response field is not an error."""
        store = RecordingSecretStore()
        resource = make_resource(
            secretInjectionConfigs=[injection(".body.missing"), injection(".body.token", key="t")]
        )

        await SecretPatcher(store).apply(resource, make_response(200, {"token": "abc"}))

        assert store.writes == [("default/api-credentials", "t", "abc")]

    @pytest.mark.asyncio
    async def test_store_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that store failures never propagate."""
        store = RecordingSecretStore(fail_writes=True)
        resource = make_resource(secretInjectionConfigs=[injection(".body.token")])

        with caplog.at_level(logging.WARNING, logger="http_operator.data_patcher"):
            await SecretPatcher(store).apply(resource, make_response(200, {"token": "abc"}))

        assert "Could not patch response data into secret" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_path_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a malformed responsePath is logged, not raised."""
        store = RecordingSecretStore()
        resource = make_resource(secretInjectionConfigs=[injection(".body.token == 1")])

        with caplog.at_level(logging.WARNING, logger="http_operator.data_patcher"):
            await SecretPatcher(store).apply(resource, make_response(200, {"token": "abc"}))

        assert store.writes == []
        assert "Could not patch" in caplog.text

    @pytest.mark.asyncio
    async def test_no_response(self) -> None:
        """Test that nothing happens without a response."""
        store = RecordingSecretStore()
        resource = make_resource(secretInjectionConfigs=[injection(".body.token")])

        await SecretPatcher(store).apply(resource, None)

        assert store.reads == []
