"""Scope adapters between manifests and the canonical Resource.

Three manifest kinds share one engine:

- ``Request``: cluster-scoped. No metadata.namespace; every secret
  reference must name its namespace.
- ``NamespacedRequest``: namespace-scoped. Secret references default to,
  and are confined to, the resource's own namespace.
- ``NamespacedDisposableRequest``: a namespace-scoped one-shot request with
  top-level url, method, body and headers. It is translated to a spec with
  a single CREATE mapping and driven by ``Reconciler.dispatch_once``.

Manifest shape::

    apiVersion: http.operator.io/v1alpha2
    kind: NamespacedRequest
    metadata: {name: ..., namespace: ...}
    spec:
      forProvider: {...}   # ResourceSpec
    status: {...}          # Status, written back after each call
"""

from __future__ import annotations

import copy
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .models import (
    DisposableRequestSpec,
    Resource,
    ResourceSpec,
    SecretInjectionConfig,
    SecretRef,
    Status,
)

API_VERSION = "http.operator.io/v1alpha2"


class ManifestError(Exception):
    """Raised when a manifest does not describe a valid resource."""

    pass


class ManifestMetadata(BaseModel):
    model_config = {"extra": "ignore"}

    name: str = Field(min_length=1)
    namespace: str | None = None


class ManifestSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    for_provider: ResourceSpec = Field(alias="forProvider")


class RequestManifest(BaseModel):
    """Schema shared by the Request and NamespacedRequest kinds."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: str
    metadata: ManifestMetadata
    spec: ManifestSpec
    status: Status = Field(default_factory=Status)


class DisposableManifestSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    for_provider: DisposableRequestSpec = Field(alias="forProvider")


class DisposableRequestManifest(RequestManifest):
    """Schema of one-shot request manifests."""

    spec: DisposableManifestSpec


def format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


class _ScopeAdapter:
    kind = ""
    manifest_model: type[RequestManifest] = RequestManifest
    # One-shot kinds are driven by Reconciler.dispatch_once
    one_shot = False

    def parse(self, manifest: dict[str, Any]) -> RequestManifest:
        try:
            parsed = self.manifest_model.model_validate(manifest)
        except ValidationError as e:
            raise ManifestError(
                f"Invalid {self.kind} manifest:\n{format_validation_error(e)}"
            ) from e
        if parsed.kind != self.kind:
            raise ManifestError(f"expected kind {self.kind}, got {parsed.kind}")
        return parsed

    def to_resource(self, manifest: dict[str, Any]) -> Resource:
        """Translate a manifest into the canonical resource.

        Raises:
            ManifestError: If the manifest is invalid for this scope.
        """
        parsed = self.parse(manifest)
        namespace = self._namespace(parsed.metadata)
        spec = self._resource_spec(parsed)
        configs = [self._bind_secret(config, namespace) for config in spec.secret_injection_configs]
        return Resource(
            name=parsed.metadata.name,
            namespace=namespace,
            spec=spec.model_copy(update={"secret_injection_configs": configs}),
            status=parsed.status,
        )

    def apply_status(self, manifest: dict[str, Any], status: Status) -> dict[str, Any]:
        """Return a copy of the manifest carrying the new status."""
        updated = copy.deepcopy(manifest)
        updated["status"] = status.to_dict()
        return updated

    def _resource_spec(self, parsed: RequestManifest) -> ResourceSpec:
        return parsed.spec.for_provider

    def _namespace(self, metadata: ManifestMetadata) -> str | None:
        raise NotImplementedError

    def _bind_secret(
        self, config: SecretInjectionConfig, namespace: str | None
    ) -> SecretInjectionConfig:
        raise NotImplementedError


class RequestAdapter(_ScopeAdapter):
    """Cluster-scoped ``Request`` manifests."""

    kind = "Request"

    def _namespace(self, metadata: ManifestMetadata) -> str | None:
        if metadata.namespace:
            raise ManifestError(
                f"{self.kind} {metadata.name} is cluster-scoped but sets a namespace"
            )
        return None

    def _bind_secret(
        self, config: SecretInjectionConfig, namespace: str | None
    ) -> SecretInjectionConfig:
        if not config.secret_ref.namespace:
            raise ManifestError(
                f"secretInjectionConfigs secretRef {config.secret_ref.name} "
                "requires a namespace for cluster-scoped resources"
            )
        return config


class NamespacedRequestAdapter(_ScopeAdapter):
    """Namespace-scoped ``NamespacedRequest`` manifests."""

    kind = "NamespacedRequest"

    def _namespace(self, metadata: ManifestMetadata) -> str | None:
        if not metadata.namespace:
            raise ManifestError(f"{self.kind} {metadata.name} requires metadata.namespace")
        return metadata.namespace

    def _bind_secret(
        self, config: SecretInjectionConfig, namespace: str | None
    ) -> SecretInjectionConfig:
        ref = config.secret_ref
        if ref.namespace and ref.namespace != namespace:
            raise ManifestError(
                f"secretRef {ref.name} targets namespace {ref.namespace}; "
                f"{self.kind} may only write secrets in {namespace}"
            )
        return config.model_copy(
            update={"secret_ref": SecretRef(name=ref.name, namespace=namespace)}
        )


class NamespacedDisposableRequestAdapter(NamespacedRequestAdapter):
    """Namespace-scoped one-shot ``NamespacedDisposableRequest`` manifests."""

    kind = "NamespacedDisposableRequest"
    manifest_model = DisposableRequestManifest
    one_shot = True

    def _resource_spec(self, parsed: RequestManifest) -> ResourceSpec:
        return parsed.spec.for_provider.to_resource_spec()


ADAPTERS: dict[str, _ScopeAdapter] = {
    adapter.kind: adapter
    for adapter in (
        RequestAdapter(),
        NamespacedRequestAdapter(),
        NamespacedDisposableRequestAdapter(),
    )
}


def adapter_for(manifest: dict[str, Any]) -> _ScopeAdapter:
    """Pick the adapter for a manifest's kind.

    Raises:
        ManifestError: If the kind is missing or unsupported.
    """
    kind = manifest.get("kind")
    adapter = ADAPTERS.get(kind) if isinstance(kind, str) else None
    if adapter is None:
        raise ManifestError(f"Unsupported kind {kind!r}. Supported kinds: {sorted(ADAPTERS)}")
    return adapter
