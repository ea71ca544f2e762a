"""
reconcilectl - Command line entry point for the remote reconciler.

Reads resource manifests (YAML or JSON) of the form::

    kind: batch_job_queue
    handle: arn:aws:batch:...   # optional, set once created
    fields:
      name: my-queue
      ...

and converges, inspects or deletes the remote objects they describe.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from tabulate import tabulate

from clients.aws import AWSControlPlane
from clients.base import ControlPlaneClient
from clients.http import HTTPControlPlane
from config import Config
from controller import Controller
from errors import ReconcileError, ValidationError
from events import EventBus, EventSubscription, EventType
from kinds.registry import KindRegistry, build_registry
from reconciler import Reconciler
from resources import ObservedState, ResourceHandle, ResourceSpec

logger = logging.getLogger(__name__)

# Events that call for attention; the rest are logged at INFO.
NOTABLE_EVENTS = frozenset(
    {
        EventType.DRIFT_DETECTED,
        EventType.STATUS_ANOMALY,
        EventType.CONVERGENCE_FAILED,
    }
)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_manifest(filename: str) -> Dict[str, Any]:
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    if not isinstance(data, dict) or "kind" not in data:
        raise ValidationError(f"{filename}: manifest must be a mapping with a 'kind'")
    return data


def _spec_from_manifest(
    registry: KindRegistry, manifest: Dict[str, Any]
) -> Tuple[ResourceSpec, Optional[ResourceHandle]]:
    kind = registry.get_kind(manifest["kind"])
    spec = kind.spec_from_fields(manifest.get("fields") or {})
    handle = None
    if manifest.get("handle"):
        handle = ResourceHandle(kind=spec.kind, id=str(manifest["handle"]))
    return spec, handle


def _build_client(config: Config, control_plane: str) -> ControlPlaneClient:
    if control_plane == "http":
        return HTTPControlPlane(config.http)
    return AWSControlPlane(config=config.aws)


def _observed_to_dict(observed: ObservedState) -> Dict[str, Any]:
    return {
        "kind": observed.handle.kind,
        "handle": observed.handle.id,
        "status": observed.status.value,
        "raw_status": observed.raw_status,
        "observed_at": observed.observed_at.isoformat(),
        "fields": observed.fields,
    }


def _echo(data: Dict[str, Any], output: str) -> None:
    if output == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    elif output == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        rows = [[k, v] for k, v in data.items() if k != "fields"]
        rows.extend([f"fields.{k}", v] for k, v in data.get("fields", {}).items())
        click.echo(tabulate(rows, headers=["Attribute", "Value"]))


class Application:
    """Wires configuration, client, registry, reconciler and controller."""

    def __init__(
        self, config: Config, control_plane: str = "aws", show_events: bool = False
    ):
        self.config = config
        self.show_events = show_events
        self.registry = build_registry()
        self.event_bus = EventBus()
        self.client = _build_client(config, control_plane)
        self.reconciler = Reconciler(
            client=self.client,
            registry=self.registry,
            config=config,
            event_bus=self.event_bus,
        )
        self.controller = Controller(
            reconciler=self.reconciler,
            config=config.controller,
            event_bus=self.event_bus,
        )

    async def report_events(self, subscription: EventSubscription) -> None:
        """Log each event; with ``show_events`` also echo it to stderr as JSON."""
        async for event in subscription:
            level = logging.INFO
            if event.event_type in NOTABLE_EVENTS:
                level = logging.WARNING
            logger.log(
                level,
                f"{event.event_type.value} {event.kind} "
                f"{event.handle_id}: {event.data}",
            )
            if self.show_events:
                click.echo(event.to_json(), err=True)

    async def close(self) -> None:
        await self.client.close()


def _run(app: Application, coro) -> Any:
    """Run a coroutine, turning reconciliation errors into exit status 1."""

    async def runner():
        subscriber_id, subscription = await app.event_bus.subscribe()
        reporter = asyncio.create_task(app.report_events(subscription))
        try:
            return await coro
        finally:
            await app.event_bus.unsubscribe(subscriber_id)
            await reporter
            await app.close()

    try:
        return asyncio.run(runner())
    except ReconcileError as e:
        click.echo(f"Error: {e.message}", err=True)
        handle = getattr(e, "handle", None)
        if handle is not None:
            click.echo(f"Handle: {handle.id}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--control-plane",
    type=click.Choice(["aws", "http"]),
    default="aws",
    show_default=True,
    help="Remote control plane to talk to",
)
@click.option("--log-level", default=None, help="Logging level (default: LOG_LEVEL)")
@click.option(
    "--events", is_flag=True, help="Print reconciliation events to stderr as JSON"
)
@click.pass_context
def cli(ctx, control_plane, log_level, events):
    """Converge remote cloud resources on their declared state"""
    config = Config.from_env()
    _configure_logging(log_level or config.log_level)
    ctx.obj = {"config": config, "control_plane": control_plane, "events": events}


def _app(ctx) -> Application:
    try:
        return Application(
            ctx.obj["config"], ctx.obj["control_plane"], ctx.obj["events"]
        )
    except ReconcileError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_context
def apply(ctx, filename, output):
    """Create or update the resource described by a manifest"""
    app = _app(ctx)
    try:
        spec, handle = _spec_from_manifest(app.registry, _load_manifest(filename))
    except ReconcileError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    result = _run(app, app.controller.converge(spec, handle))

    click.echo(f"Action: {result.action}")
    _echo(_observed_to_dict(result.observed), output)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_context
def plan(ctx, filename):
    """Show how a resource drifted from its manifest"""
    app = _app(ctx)
    try:
        spec, handle = _spec_from_manifest(app.registry, _load_manifest(filename))
    except ReconcileError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if handle is None:
        click.echo(f"{spec.kind} will be created")
        return

    _, drift = _run(app, app.controller.refresh(handle, spec))
    if not drift:
        click.echo("No changes. Remote object matches the manifest.")
        return

    immutable = app.reconciler.effective_spec(spec).immutable_fields
    rows = []
    for record in drift:
        if record.reordered_only:
            change = "reordered (ignored)"
        elif record.field in immutable:
            change = "replace"
        else:
            change = "update"
        rows.append([record.field, record.observed, record.desired, change])
    click.echo(tabulate(rows, headers=["Field", "Observed", "Desired", "Change"]))


@cli.command()
@click.argument("kind")
@click.argument("handle_id")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_context
def describe(ctx, kind, handle_id, output):
    """Show the observed state of a remote object"""
    app = _app(ctx)
    observed = _run(app, app.reconciler.read(ResourceHandle(kind=kind, id=handle_id)))
    _echo(_observed_to_dict(observed), output)


@cli.command()
@click.argument("kind")
@click.argument("handle_id")
@click.confirmation_option(prompt="Are you sure you want to delete this resource?")
@click.pass_context
def destroy(ctx, kind, handle_id):
    """Delete a remote object and wait until it is gone"""
    app = _app(ctx)
    _run(app, app.controller.destroy(ResourceHandle(kind=kind, id=handle_id)))
    click.echo(f"Deleted {kind} {handle_id}")


@cli.command()
@click.pass_context
def kinds(ctx):
    """List the resource kinds this tool can manage"""
    registry = build_registry()
    rows = [
        [
            summary["kind"],
            ", ".join(summary["required"]),
            ", ".join(summary["immutable"]) or "-",
            ", ".join(summary["unordered"]) or "-",
        ]
        for summary in registry.describe_kinds()
    ]
    click.echo(tabulate(rows, headers=["Kind", "Required", "Immutable", "Unordered"]))


if __name__ == "__main__":
    cli()
