"""Copies response fields into secrets.

Secret injection is a convenience side effect: the resource's own status is
authoritative. ``SecretPatcher.apply`` therefore never raises; every failure
is logged and the remaining configs are still applied.
"""

from __future__ import annotations

import json
import logging

from .expression import ExpressionEvaluationError, ExpressionSyntaxError, resolve_path
from .models import HttpResponse, Resource, SecretInjectionConfig, SecretRef
from .predicates import build_response_context
from .secret_store import SecretNotFoundError, SecretStore, SecretStoreError

logger = logging.getLogger(__name__)


class SecretPatchError(Exception):
    """Raised inside the patcher for one failed injection; always logged, never propagated."""

    pass


class SecretPatcher:
    """Applies SecretInjectionConfigs to a received response."""

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store

    async def apply(self, resource: Resource, response: HttpResponse | None) -> None:
        """Patch every configured secret from the response. Never raises."""
        configs = resource.spec.secret_injection_configs
        if response is None or not configs:
            return

        context = build_response_context(response)
        for config in configs:
            try:
                await self._apply_one(resource, config, context)
            except Exception as e:
                logger.warning(
                    "Could not patch response data into secret",
                    extra={
                        "resource": resource.key,
                        "secret": str(config.secret_ref),
                        "secret_key": config.secret_key,
                        "error": str(e),
                    },
                    exc_info=not isinstance(e, SecretPatchError),
                )

    async def _apply_one(
        self, resource: Resource, config: SecretInjectionConfig, context: dict
    ) -> None:
        try:
            value = resolve_path(config.response_path, context)
        except ExpressionEvaluationError:
            logger.debug(
                "Response path absent, skipping secret injection",
                extra={"resource": resource.key, "response_path": config.response_path},
            )
            return
        except ExpressionSyntaxError as e:
            raise SecretPatchError(f"invalid responsePath {config.response_path!r}: {e}") from e

        if value is None:
            return
        text = value if isinstance(value, str) else json.dumps(value)

        ref = config.secret_ref
        if ref.namespace is None and resource.namespace is not None:
            ref = SecretRef(name=ref.name, namespace=resource.namespace)

        try:
            try:
                current = await self._secret_store.read(ref, config.secret_key)
            except SecretNotFoundError:
                current = None
            if current == text:
                return
            await self._secret_store.write(ref, config.secret_key, text)
        except SecretStoreError as e:
            raise SecretPatchError(str(e)) from e

        logger.info(
            "Patched response data into secret",
            extra={"resource": resource.key, "secret": str(ref), "secret_key": config.secret_key},
        )
