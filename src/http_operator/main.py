"""Logging setup and the manifest-driven reconcile entry point.

The CLI uses ``reconcile_file`` to run one reconcile call (or an
observe-then-act ``sync`` pass) against a manifest on disk and write the
resulting status back.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from .adapters import ManifestError, adapter_for
from .config import MAX_MANIFEST_FILE_SIZE_BYTES, OperatorConfig
from .models import Action, Resource
from .reconciler import ActionFailedError, ReconcileResult, Reconciler
from .spec_loader import load_resource, save_manifest

SYNC = "sync"
DISPATCH = "dispatch"

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: OperatorConfig) -> None:
    """Configure root logging: JSON lines on stdout, or plain text to stderr."""
    if config.json_logs:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(config.log_level_value)

    # Reduce noise from client libraries
    for name in ("httpx", "httpcore", "kubernetes", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


async def reconcile_file(
    path: Path,
    mode: str,
    reconciler: Reconciler,
    write_status: bool = False,
    max_bytes: int = MAX_MANIFEST_FILE_SIZE_BYTES,
) -> ReconcileResult:
    """Run one reconcile pass for the manifest at ``path``.

    Args:
        path: Manifest file.
        mode: An action name (observe, create, update, delete), "sync",
            which observes and then creates or updates as needed, or
            "dispatch". One-shot manifests only accept "sync" and
            "dispatch", which both run ``Reconciler.dispatch_once``.
        reconciler: Engine to run the calls with.
        write_status: Write the new status back into the manifest file,
            including after a failed call.
        max_bytes: Manifest size limit.

    Raises:
        ManifestLoadError: If the manifest cannot be loaded.
        ManifestError: If the mode does not apply to the manifest kind.
        ActionFailedError: If the call failed (status already written).
    """
    manifest, resource = load_resource(path, max_bytes)
    adapter = adapter_for(manifest)

    if adapter.one_shot and mode not in (SYNC, DISPATCH):
        raise ManifestError(f"{adapter.kind} only supports {SYNC} and {DISPATCH}, not {mode}")
    if not adapter.one_shot and mode == DISPATCH:
        raise ManifestError(f"{DISPATCH} requires a one-shot manifest, got {adapter.kind}")

    try:
        if adapter.one_shot:
            result = await reconciler.dispatch_once(resource)
        elif mode == SYNC:
            result = await _sync(reconciler, resource)
        else:
            result = await _run_action(reconciler, resource, Action(mode.upper()))
    except ActionFailedError as e:
        if write_status:
            save_manifest(path, adapter.apply_status(manifest, e.status))
        raise

    if write_status and result.status != resource.status:
        save_manifest(path, adapter.apply_status(manifest, result.status))
    return result


async def _run_action(
    reconciler: Reconciler, resource: Resource, action: Action
) -> ReconcileResult:
    match action:
        case Action.OBSERVE:
            return await reconciler.observe(resource)
        case Action.CREATE:
            return await reconciler.create(resource)
        case Action.UPDATE:
            return await reconciler.update(resource)
        case _:
            return await reconciler.delete(resource)


async def _sync(reconciler: Reconciler, resource: Resource) -> ReconcileResult:
    observed = await reconciler.observe(resource)
    current = resource.with_status(observed.status)
    if not observed.exists:
        return await reconciler.create(current)
    if not observed.up_to_date:
        return await reconciler.update(current)
    return observed
