"""Request template rendering.

Mapping url, body and header values are Jinja2 templates rendered with
``StrictUndefined``, so a reference to anything that does not exist is an
error instead of an empty string. The template context holds:

- ``payload``: ``baseUrl`` and ``body`` from the resource spec.
- ``response``: ``statusCode``, ``headers`` and ``body`` of the cached
  response. Only defined once a response has been received.
- ``secret(name, key, namespace=None)``: reads a secret value. Without a
  namespace the secret resolves in the resource's own namespace.

Bodies are parsed when they are JSON, so ``{{ response.body.id }}`` reads a
field of the last response. Keys that collide with dict methods (``items``,
``keys``, ``values``) need subscript syntax: ``{{ response.body["items"] }}``.

Strings are inserted verbatim; any other value is inserted as JSON.
Rendering failures are ``TemplateRenderError`` and never reach the network.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any

import httpx
import jinja2
from jinja2.sandbox import SandboxedEnvironment

from .models import Mapping, RequestDetails, Resource, SecretRef, parse_body
from .secret_store import SecretStore, SecretStoreError

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = ("http", "https")


class TemplateRenderError(Exception):
    """Raised when a request template cannot be rendered."""

    pass


def _finalize(value: Any) -> Any:
    # Undefined passes through so StrictUndefined raises when printed
    if isinstance(value, str | jinja2.Undefined):
        return value
    return json.dumps(value)


_ENVIRONMENT = SandboxedEnvironment(
    undefined=jinja2.StrictUndefined,
    enable_async=True,
    keep_trailing_newline=True,
    autoescape=False,
    finalize=_finalize,
)


@lru_cache(maxsize=256)
def compile_template(source: str) -> jinja2.Template:
    """Parse a template.

    Raises:
        jinja2.TemplateSyntaxError: If the template is malformed.
    """
    return _ENVIRONMENT.from_string(source)


def template_context(resource: Resource) -> dict[str, Any]:
    """Build the variables templates are rendered with."""
    payload = resource.spec.payload
    context: dict[str, Any] = {
        "payload": {"baseUrl": payload.base_url, "body": parse_body(payload.body)},
    }
    cached = resource.status.cache.response
    if cached.status_code:
        context["response"] = cached.to_context()
    return context


def merge_headers(
    base: dict[str, list[str]], override: dict[str, list[str]]
) -> dict[str, list[str]]:
    """Overlay mapping headers on spec-wide headers, case-insensitively by name."""
    merged = {name: list(values) for name, values in base.items()}
    for name, values in override.items():
        for existing in [n for n in merged if n.lower() == name.lower()]:
            del merged[existing]
        merged[name] = list(values)
    return merged


def validate_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise TemplateRenderError(f"invalid URL {url!r}: {e}") from e
    if parsed.scheme not in ALLOWED_URL_SCHEMES or not parsed.host:
        raise TemplateRenderError(f"invalid URL {url!r}: expected an absolute http(s) URL")


class RequestRenderer:
    """Renders mappings into concrete requests."""

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store

    async def render(self, resource: Resource, mapping: Mapping) -> RequestDetails:
        """Render a mapping for a resource.

        Raises:
            TemplateRenderError: If any template cannot be rendered or the
                resulting URL is not a valid absolute http(s) URL.
        """
        context = template_context(resource)
        namespace = resource.namespace

        url_template = mapping.url or resource.spec.payload.base_url
        if not url_template:
            raise TemplateRenderError(
                f"mapping for {mapping.method} has no url and payload.baseUrl is empty"
            )
        rendered_url = await self.render_template(url_template, context, namespace, "url")
        validate_url(rendered_url)

        rendered_body = await self.render_template(mapping.body, context, namespace, "body")

        rendered_headers: dict[str, list[str]] = {}
        for name, values in merge_headers(resource.spec.headers, mapping.headers).items():
            rendered_headers[name] = [
                await self.render_template(value, context, namespace, f"headers.{name}")
                for value in values
            ]

        return RequestDetails(
            method=mapping.method, url=rendered_url, body=rendered_body, headers=rendered_headers
        )

    async def render_template(
        self,
        template: str,
        context: dict[str, Any],
        namespace: str | None,
        field_name: str,
    ) -> str:
        """Render one template string."""
        if "{" not in template:
            return template

        async def secret(name: str, key: str, namespace: str | None = namespace) -> str:
            return await self._read_secret(name, key, namespace, field_name)

        try:
            return await compile_template(template).render_async(context, secret=secret)
        except (jinja2.TemplateError, TypeError, ValueError, ArithmeticError) as e:
            raise TemplateRenderError(f"cannot render {field_name}: {e}") from e

    async def _read_secret(
        self, name: str, key: str, namespace: str | None, field_name: str
    ) -> str:
        if namespace is None:
            raise TemplateRenderError(
                f"cannot render {field_name}: secret {name} needs a namespace "
                "for cluster-scoped resources"
            )
        try:
            ref = SecretRef(name=name, namespace=namespace)
        except ValueError as e:
            raise TemplateRenderError(
                f"cannot render {field_name}: invalid secret name {name!r}"
            ) from e
        try:
            return await self._secret_store.read(ref, key)
        except SecretStoreError as e:
            raise TemplateRenderError(f"cannot render {field_name}: {e}") from e
