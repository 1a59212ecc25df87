"""Secret store doubles.

``RecordingSecretStore`` wraps the in-memory store, counts reads and
writes, and can be told to fail. ``mock_core_v1_api`` builds a MagicMock
standing in for ``kubernetes.client.CoreV1Api``.
"""

from __future__ import annotations

import base64
from typing import Any
from unittest.mock import MagicMock

from kubernetes import client as k8s_client

from http_operator.models import SecretRef
from http_operator.secret_store import InMemorySecretStore, SecretStoreError


class RecordingSecretStore(InMemorySecretStore):
    """In-memory store that records calls and supports error injection."""

    def __init__(
        self,
        secrets: dict[str, dict[str, str]] | None = None,
        *,
        fail_reads: bool = False,
        fail_writes: bool = False,
    ) -> None:
        super().__init__(secrets)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.reads: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, str]] = []

    async def read(self, ref: SecretRef, key: str) -> str:
        self.reads.append((str(ref), key))
        if self.fail_reads:
            raise SecretStoreError("secret store unreachable")
        return await super().read(ref, key)

    async def write(self, ref: SecretRef, key: str, value: str) -> None:
        if self.fail_writes:
            raise SecretStoreError("secret store unreachable")
        self.writes.append((str(ref), key, value))
        await super().write(ref, key, value)


def encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def mock_core_v1_api(secrets: dict[str, dict[str, str]] | None = None) -> MagicMock:
    """MagicMock CoreV1Api backed by a dict of ``namespace/name`` -> plain data.

    ``read_namespaced_secret`` returns objects with base64 ``data`` and
    raises a 404 ApiException for unknown secrets. Patch and create calls
    are recorded by the mock and also update the backing dict.
    """
    state: dict[str, dict[str, str]] = {k: dict(v) for k, v in (secrets or {}).items()}
    api = MagicMock(spec=k8s_client.CoreV1Api)

    def not_found() -> k8s_client.ApiException:
        return k8s_client.ApiException(status=404, reason="Not Found")

    def read(name: str, namespace: str) -> Any:
        data = state.get(f"{namespace}/{name}")
        if data is None:
            raise not_found()
        secret = MagicMock()
        secret.data = {key: encode(value) for key, value in data.items()}
        return secret

    def patch(name: str, namespace: str, body: dict[str, Any]) -> None:
        data = state.get(f"{namespace}/{name}")
        if data is None:
            raise not_found()
        for key, value in body["data"].items():
            data[key] = base64.b64decode(value).decode("utf-8")

    def create(namespace: str, body: dict[str, Any]) -> None:
        name = body["metadata"]["name"]
        state[f"{namespace}/{name}"] = {
            key: base64.b64decode(value).decode("utf-8") for key, value in body["data"].items()
        }

    api.read_namespaced_secret.side_effect = read
    api.patch_namespaced_secret.side_effect = patch
    api.create_namespaced_secret.side_effect = create
    api.state = state
    return api


def mock_raw_secret_api(data: dict[str, str]) -> MagicMock:
    """MagicMock CoreV1Api whose every secret carries ``data`` as given.

    Values are passed through untouched, so tests can hand out base64 that
    decodes to binary or is not base64 at all.
    """
    api = MagicMock(spec=k8s_client.CoreV1Api)
    secret = MagicMock()
    secret.data = dict(data)
    api.read_namespaced_secret.return_value = secret
    return api
