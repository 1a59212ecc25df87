"""Test doubles for the HTTP request operator.

Provides a scripted HTTP transport, recording secret stores, a mocked
Kubernetes CoreV1Api and builders for resources and manifests, so the
engine can be exercised without network or cluster access.

Usage:
    from http_mock import MockHttpTransport, RecordingSecretStore, make_resource

    transport = MockHttpTransport().respond(201, {"id": "42"})
    reconciler = Reconciler(transport, RecordingSecretStore())
    result = await reconciler.create(make_resource())

    assert transport.last_request.method == "POST"
"""

from .resources import (
    BASE_URL,
    DISPOSABLE_BODY,
    DISPOSABLE_HEADERS,
    DISPOSABLE_URL,
    FIXED_NOW,
    FIXED_NOW_TEXT,
    created_status,
    fixed_clock,
    make_disposable_manifest,
    make_disposable_resource,
    make_manifest,
    make_resource,
    make_spec,
)
from .secrets import RecordingSecretStore, mock_core_v1_api, mock_raw_secret_api
from .transport import MockHttpTransport, SentRequest, make_response

__all__ = [
    "BASE_URL",
    "DISPOSABLE_BODY",
    "DISPOSABLE_HEADERS",
    "DISPOSABLE_URL",
    "FIXED_NOW",
    "FIXED_NOW_TEXT",
    "MockHttpTransport",
    "RecordingSecretStore",
    "SentRequest",
    "created_status",
    "fixed_clock",
    "make_disposable_manifest",
    "make_disposable_resource",
    "make_manifest",
    "make_resource",
    "make_response",
    "make_spec",
    "mock_core_v1_api",
    "mock_raw_secret_api",
]
