"""Tests for logging setup and the manifest reconcile driver."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import yaml
from http_mock import (
    MockHttpTransport,
    RecordingSecretStore,
    fixed_clock,
    make_disposable_manifest,
    make_manifest,
)

from http_operator.config import OperatorConfig
from http_operator.main import JsonFormatter, reconcile_file, setup_logging
from http_operator.reconciler import ActionFailedError, Reconciler


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestLogging:
    """Tests for setup_logging and JsonFormatter."""

    def test_json_formatter_includes_extra(self) -> None:
        """Test that extra fields and exceptions are emitted."""
        record = logging.LogRecord("http_operator.test", logging.INFO, __file__, 1, "hello", (), None)
        record.resource = "default/item"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "http_operator.test"
        assert data["resource"] == "default/item"
        assert data["timestamp"].endswith("Z")

    def test_setup_logging_levels(self) -> None:
        """Test root level and noisy library loggers."""
        setup_logging(OperatorConfig(log_level="DEBUG", json_logs=False))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_setup_json_logging(self) -> None:
        """Test that JSON logging installs the JSON formatter."""
        setup_logging(OperatorConfig())
        assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)


class TestReconcileFile:
    """Tests for reconcile_file."""

    @pytest.mark.asyncio
    async def test_observe_leaves_unchanged_status_unwritten(self, tmp_path: Path) -> None:
        """Test that an unchanged status is not rewritten."""
        path = tmp_path / "item.yaml"
        path.write_text(yaml.safe_dump(make_manifest(), sort_keys=False))
        before = path.read_text()
        reconciler = Reconciler(MockHttpTransport(), RecordingSecretStore())

        result = await reconcile_file(path, "observe", reconciler, write_status=True)

        assert result.exists is False
        assert path.read_text() == before

    @pytest.mark.asyncio
    async def test_failed_call_writes_status(self, tmp_path: Path) -> None:
        """Test that failure evidence is persisted before re-raising."""
        path = tmp_path / "item.yaml"
        path.write_text(yaml.safe_dump(make_manifest(), sort_keys=False))
        transport = MockHttpTransport().fail("connection refused")
        reconciler = Reconciler(transport, RecordingSecretStore(), clock=fixed_clock())

        with pytest.raises(ActionFailedError):
            await reconcile_file(path, "create", reconciler, write_status=True)

        saved = yaml.safe_load(path.read_text())
        assert saved["status"]["failed"] == 1
        assert saved["status"]["requestDetails"]["method"] == "POST"

    @pytest.mark.asyncio
    async def test_sync_dispatches_one_shot_manifest(self, tmp_path: Path) -> None:
        """Test that sync sends a one-shot request without observing first."""
        path = tmp_path / "request.yaml"
        path.write_text(yaml.safe_dump(make_disposable_manifest(), sort_keys=False))
        transport = MockHttpTransport().respond(400, "bad request")
        reconciler = Reconciler(transport, RecordingSecretStore(), clock=fixed_clock())

        with pytest.raises(ActionFailedError):
            await reconcile_file(path, "sync", reconciler, write_status=True)

        saved = yaml.safe_load(path.read_text())
        assert transport.last_request.method == "GET"
        assert saved["status"]["failed"] == 1
        assert saved["status"]["response"]["statusCode"] == 400
