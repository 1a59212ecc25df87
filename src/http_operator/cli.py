"""HTTP Request Operator CLI (httpop).

Runs single reconcile calls against manifest files, for debugging a
resource definition without the full controller.

Usage:
    httpop observe request.yaml                 # Probe and report drift
    httpop create request.yaml --write-status   # Send the create request
    httpop sync request.yaml --write-status     # Observe, then create/update
    httpop --secrets-file secrets.yaml update request.yaml
    httpop --kube delete request.yaml           # Use Kubernetes Secrets
    httpop dispatch disposable.yaml --write-status  # One-shot request
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import click
import yaml

from .config import ConfigurationError, OperatorConfig
from .adapters import ManifestError
from .main import DISPATCH, SYNC, reconcile_file, setup_logging
from .mapping import NoMappingError
from .models import Status
from .reconciler import ActionFailedError, ReconcileResult, Reconciler, RetryLimitExceededError
from .secret_store import (
    FileSecretStore,
    InMemorySecretStore,
    KubernetesSecretStore,
    SecretStore,
    SecretStoreError,
)
from .spec_loader import ManifestLoadError
from .transport import HttpxTransport


@dataclass
class CliContext:
    config: OperatorConfig
    secret_store: SecretStore


def build_secret_store(
    secrets_file: Path | None, kube: bool, config: OperatorConfig
) -> SecretStore:
    if secrets_file is not None and kube:
        raise click.UsageError("--secrets-file and --kube are mutually exclusive")
    if kube:
        try:
            return KubernetesSecretStore.from_cluster(config.secret_store_timeout_seconds)
        except SecretStoreError as e:
            raise click.ClickException(str(e)) from e
    if secrets_file is not None:
        return FileSecretStore(secrets_file)
    return InMemorySecretStore()


def echo_status(status: Status) -> None:
    click.echo(yaml.safe_dump({"status": status.to_dict()}, sort_keys=False), nl=False)


def echo_result(result: ReconcileResult) -> None:
    if not result.dispatched:
        click.secho(f"{result.action.value} request not sent", fg="yellow")
    elif result.removed:
        click.secho("Resource removed", fg="yellow")
    elif not result.exists:
        click.secho("Resource does not exist", fg="yellow")
    elif result.up_to_date:
        click.secho("Resource is up to date", fg="green")
    else:
        click.secho("Resource is not up to date", fg="yellow")
    echo_status(result.status)


@click.group()
@click.version_option(version="0.1.0", prog_name="httpop")
@click.option(
    "--secrets-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML file used as the secret store",
)
@click.option("--kube", is_flag=True, help="Use Kubernetes Secrets as the secret store")
@click.pass_context
def cli(ctx: click.Context, secrets_file: Path | None, kube: bool) -> None:
    """HTTP Request Operator - reconcile HTTP-managed resources."""
    try:
        config = OperatorConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(config)
    ctx.obj = CliContext(config=config, secret_store=build_secret_store(secrets_file, kube, config))


def _run(obj: CliContext, manifest: Path, mode: str, write_status: bool) -> None:
    reconciler = Reconciler(
        transport=HttpxTransport(obj.config.default_wait_timeout_seconds),
        secret_store=obj.secret_store,
        config=obj.config,
    )
    try:
        result = asyncio.run(
            reconcile_file(
                manifest,
                mode,
                reconciler,
                write_status=write_status,
                max_bytes=obj.config.max_manifest_bytes,
            )
        )
    except ActionFailedError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        echo_status(e.status)
        raise SystemExit(1) from e
    except (
        ConfigurationError,
        ManifestError,
        ManifestLoadError,
        NoMappingError,
        RetryLimitExceededError,
    ) as e:
        raise click.ClickException(str(e)) from e

    echo_result(result)


def _mode_command(mode: str, help_text: str) -> click.Command:
    @click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
    @click.option("--write-status", is_flag=True, help="Write the new status into the manifest")
    @click.pass_obj
    def command(obj: CliContext, manifest: Path, write_status: bool) -> None:
        _run(obj, manifest, mode, write_status)

    command.__doc__ = help_text
    return click.command(mode)(command)


cli.add_command(_mode_command("observe", "Observe the resource and report drift."))
cli.add_command(_mode_command("create", "Send the create request."))
cli.add_command(_mode_command("update", "Send the update request."))
cli.add_command(_mode_command("delete", "Send the delete request."))
cli.add_command(_mode_command(SYNC, "Observe, then create or update as needed."))
cli.add_command(
    _mode_command(DISPATCH, "Send a one-shot request unless an earlier attempt settled it.")
)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
