"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for http_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from http_mock import MockHttpTransport, RecordingSecretStore, fixed_clock  # noqa: E402

from http_operator.reconciler import Reconciler  # noqa: E402


@pytest.fixture
def transport() -> MockHttpTransport:
    return MockHttpTransport()


@pytest.fixture
def secret_store() -> RecordingSecretStore:
    return RecordingSecretStore({"default/api-credentials": {"token": "s3cr3t"}})


@pytest.fixture
def reconciler(transport: MockHttpTransport, secret_store: RecordingSecretStore) -> Reconciler:
    return Reconciler(transport, secret_store, clock=fixed_clock())
