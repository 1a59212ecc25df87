"""Secret store collaborators.

The engine consumes secrets through a two-operation protocol: read a key,
write a key. Implementations:

- InMemorySecretStore: process-local, used by tests and dry runs
- FileSecretStore: YAML file on disk, used by the CLI
- KubernetesSecretStore: Secrets in a Kubernetes cluster

All blocking calls to the Kubernetes API run in the default executor and
are bounded by a timeout so a hung API server cannot stall reconciliation.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Protocol

import yaml
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .config import DEFAULT_SECRET_STORE_TIMEOUT_SECONDS
from .models import SecretRef

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class SecretStoreError(Exception):
    """Raised when the secret store cannot be reached or rejects a call."""

    pass


class SecretNotFoundError(SecretStoreError):
    """Raised when a secret or one of its keys does not exist."""

    pass


class SecretStore(Protocol):
    """Read/write access to named secret keys."""

    async def read(self, ref: SecretRef, key: str) -> str: ...

    async def write(self, ref: SecretRef, key: str, value: str) -> None: ...


def _ref_key(ref: SecretRef) -> str:
    return f"{ref.namespace}/{ref.name}" if ref.namespace else ref.name


class InMemorySecretStore:
    """Secret store held in a dictionary keyed by ``namespace/name``."""

    def __init__(self, secrets: dict[str, dict[str, str]] | None = None) -> None:
        self._secrets: dict[str, dict[str, str]] = {
            name: dict(data) for name, data in (secrets or {}).items()
        }

    async def read(self, ref: SecretRef, key: str) -> str:
        data = self._secrets.get(_ref_key(ref))
        if data is None:
            raise SecretNotFoundError(f"secret {ref} not found")
        if key not in data:
            raise SecretNotFoundError(f"key {key!r} not found in secret {ref}")
        return data[key]

    async def write(self, ref: SecretRef, key: str, value: str) -> None:
        self._secrets.setdefault(_ref_key(ref), {})[key] = value

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Copy of all stored secrets."""
        return {name: dict(data) for name, data in self._secrets.items()}


class FileSecretStore:
    """Secret store backed by a YAML file.

    File layout::

        team-a/api-credentials:
          token: s3cr3t
        cluster-wide-secret:
          password: hunter2
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, dict[str, str]]:
        if not self._path.exists():
            return {}
        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise SecretStoreError(f"Failed to read secrets file {self._path}: {e}") from e
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise SecretStoreError(f"Secrets file must contain a YAML mapping: {self._path}")
        return {
            str(name): {str(k): str(v) for k, v in (data or {}).items()}
            for name, data in raw.items()
        }

    async def read(self, ref: SecretRef, key: str) -> str:
        return await InMemorySecretStore(self._load()).read(ref, key)

    async def write(self, ref: SecretRef, key: str, value: str) -> None:
        secrets = self._load()
        secrets.setdefault(_ref_key(ref), {})[key] = value
        try:
            self._path.write_text(yaml.safe_dump(secrets, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise SecretStoreError(f"Failed to write secrets file {self._path}: {e}") from e


class KubernetesSecretStore:
    """Secret store backed by Kubernetes Secrets.

    Values are base64 encoded in ``data`` as the API requires. Writing to a
    secret that does not exist creates it.
    """

    def __init__(
        self,
        api: k8s_client.CoreV1Api | None = None,
        timeout_seconds: float = DEFAULT_SECRET_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._api = api or k8s_client.CoreV1Api()
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_cluster(
        cls, timeout_seconds: float = DEFAULT_SECRET_STORE_TIMEOUT_SECONDS
    ) -> KubernetesSecretStore:
        """Create a store using in-cluster config, falling back to kubeconfig."""
        try:
            k8s_config.load_incluster_config()
        except k8s_config.ConfigException:
            try:
                k8s_config.load_kube_config()
            except k8s_config.ConfigException as e:
                raise SecretStoreError(f"Cannot load Kubernetes configuration: {e}") from e
        return cls(k8s_client.CoreV1Api(), timeout_seconds=timeout_seconds)

    async def _call(self, description: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: fn(*args, **kwargs)),
                timeout=self._timeout_seconds,
            )
        except TimeoutError as e:
            raise SecretStoreError(
                f"{description} timed out after {self._timeout_seconds}s"
            ) from e

    @staticmethod
    def _namespace(ref: SecretRef) -> str:
        if not ref.namespace:
            raise SecretStoreError(f"secret {ref.name} has no namespace")
        return ref.namespace

    async def read(self, ref: SecretRef, key: str) -> str:
        namespace = self._namespace(ref)
        try:
            secret = await self._call(
                f"reading secret {ref}", self._api.read_namespaced_secret, ref.name, namespace
            )
        except k8s_client.ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                raise SecretNotFoundError(f"secret {ref} not found") from e
            raise SecretStoreError(f"Failed to read secret {ref}: {e.reason}") from e

        data = secret.data or {}
        if key not in data:
            raise SecretNotFoundError(f"key {key!r} not found in secret {ref}")
        try:
            return base64.b64decode(data[key], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretStoreError(f"cannot decode key {key!r} in secret {ref}: {e}") from e

    async def write(self, ref: SecretRef, key: str, value: str) -> None:
        namespace = self._namespace(ref)
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        try:
            await self._call(
                f"patching secret {ref}",
                self._api.patch_namespaced_secret,
                ref.name,
                namespace,
                {"data": {key: encoded}},
            )
            return
        except k8s_client.ApiException as e:
            if e.status != HTTP_NOT_FOUND:
                raise SecretStoreError(f"Failed to patch secret {ref}: {e.reason}") from e

        logger.info("Creating secret", extra={"secret": str(ref)})
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": ref.name, "namespace": namespace},
            "data": {key: encoded},
        }
        try:
            await self._call(
                f"creating secret {ref}", self._api.create_namespaced_secret, namespace, body
            )
        except k8s_client.ApiException as e:
            raise SecretStoreError(f"Failed to create secret {ref}: {e.reason}") from e
