"""
Flow engine CLI
"""
import asyncio
import json

import click
import yaml

from .config import EngineSettings, configure_logging
from .errors import CollaboratorError
from .messages import WorkflowRequest
from .models import FlowDefinition
from .persistence import SqliteFlowStore
from .runner import FlowRunner


def _settings(ctx: click.Context) -> EngineSettings:
    return ctx.obj["settings"]


def _store(ctx: click.Context, db) -> SqliteFlowStore:
    settings = _settings(ctx)
    return SqliteFlowStore(db or settings.database, user=settings.local_user())


def _runner(ctx: click.Context, store: SqliteFlowStore) -> FlowRunner:
    return FlowRunner(
        api_factory=lambda request: store,
        sink_factory=lambda request: None,
        imports=_settings(ctx).imports,
    )


def _parse_data(data):
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--data")


def _report(result) -> None:
    if result is None:
        click.echo("Execution abandoned, see the log above", err=True)
        raise click.exceptions.Exit(1)
    click.echo(f"Instance: {result.id}")
    click.echo(f"State: {result.state}")


@click.group()
@click.pass_context
def cli(ctx):
    """Flow engine CLI"""
    settings = EngineSettings.from_env()
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings}


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
@click.pass_context
def serve(ctx, host, port, reload):
    """Start the API server"""
    import uvicorn

    settings = _settings(ctx)
    host = host or settings.host
    port = port or settings.port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "flow_engine.api:app_from_env",
        factory=True,
        host=host,
        port=port,
        reload=reload or settings.reload,
    )


@cli.command()
@click.argument('definition_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--data', default=None, help='JSON payload handed to the start activity')
@click.option('--instance-id', default=None, help='Id for the new instance')
@click.option('--db', default=None, help='SQLite database holding definitions and instances')
@click.pass_context
def run(ctx, definition_file, data, instance_id, db):
    """Run a flow definition from a YAML or JSON file"""
    with open(definition_file, 'r', encoding='utf-8') as f:
        payload = yaml.safe_load(f)
    if not isinstance(payload, dict):
        raise click.BadParameter("flow definition must be a mapping", param_hint="DEFINITION_FILE")

    store = _store(ctx, db)
    definition = FlowDefinition.from_dict(payload)
    store.save_definition(definition)

    request = WorkflowRequest(flow_id=definition.id, instance_id=instance_id, data=_parse_data(data))
    _report(asyncio.run(_runner(ctx, store).run(request)))


@cli.command()
@click.argument('instance_id')
@click.option('--from', 'resume_from', required=True, help='Ref of the suspended activity')
@click.option('--data', default=None, help='JSON payload handed to the resumed activity')
@click.option('--db', default=None, help='SQLite database holding definitions and instances')
@click.pass_context
def resume(ctx, instance_id, resume_from, data, db):
    """Resume a suspended instance"""
    store = _store(ctx, db)
    request = WorkflowRequest(instance_id=instance_id, resume_from=resume_from, data=_parse_data(data))
    _report(asyncio.run(_runner(ctx, store).run(request)))


@cli.command()
@click.argument('instance_id')
@click.option('--db', default=None, help='SQLite database holding definitions and instances')
@click.pass_context
def show(ctx, instance_id, db):
    """Show the state and execution log of an instance"""
    store = _store(ctx, db)
    try:
        data = store.load_instance(instance_id)
    except CollaboratorError as exc:
        raise click.ClickException(str(exc))

    click.echo(f"Instance: {data.id} ({data.name})")
    click.echo(f"State: {data.state}")
    context = json.loads(data.context_json) if data.context_json else {}
    for activity in context.get("flow", {}).get("activities", []):
        click.echo(f"  {activity['ref']}: {activity.get('state')}")
    for entry in context.get("execution_log", []):
        click.echo(f"[{entry['level']}] {entry['message']}")


def main():
    cli()


if __name__ == '__main__':
    main()
