"""Main entry point for the SQL OData Gateway."""

import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from dotenv import load_dotenv

from odata_sql_gateway import __version__
from odata_sql_gateway.auth import TokenStore
from odata_sql_gateway.client import SqlServerClient
from odata_sql_gateway.config.settings import GatewayConfig
from odata_sql_gateway.environments import EnvironmentResolver, mask_connection_string
from odata_sql_gateway.errors import (
    ConfigurationError,
    GatewayError,
    setup_logging,
    get_logger,
    log_error,
    log_operation
)
from odata_sql_gateway.registry import EndpointRegistry, FileEndpointLoader, build_descriptor
from odata_sql_gateway.server import create_app


def _load_configuration(log_level: Optional[str] = None) -> GatewayConfig:
    """Load configuration from the environment, applying CLI overrides, and validate it."""
    config = GatewayConfig.from_env()
    if log_level:
        config.log_level = log_level
    try:
        config.validate()
    except ConfigurationError as e:
        click.echo(f"✗ Configuration validation failed: {e.message}", err=True)
        sys.exit(1)
    return config


@click.group()
@click.option(
    "--config-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to configuration file (.env format)",
)
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
@click.version_option(__version__, prog_name="SQL OData Gateway")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str]) -> None:
    """SQL Server to OData/REST gateway."""
    if config_file:
        load_dotenv(Path(config_file), override=True)
        click.echo(f"Loaded configuration from: {config_file}")
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper() if log_level else None


@cli.command()
@click.option("--host", envvar="GATEWAY_HOST", help="Interface to bind")
@click.option("--port", envvar="GATEWAY_PORT", type=int, help="Port to listen on")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Start the HTTP gateway."""
    config = _load_configuration(ctx.obj.get("log_level"))
    if host:
        config.host = host
    if port is not None:
        config.port = port

    setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        structured=config.structured_logging
    )
    logger = get_logger(__name__)

    try:
        app = create_app(config)
        log_operation(logger, "server_startup_initiated", host=config.host, port=config.port)
        uvicorn.run(app, host=config.host, port=config.port, server_header=False, log_config=None)
    except GatewayError as e:
        log_error(logger, e, operation="main_startup")
        click.echo(f"Error starting server: {e.get_user_message()}", err=True)
        click.echo(f"Technical details: {e.get_technical_details()}", err=True)
        sys.exit(1)


@cli.command("validate-config")
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate settings, endpoint descriptors and environments, then exit."""
    config = _load_configuration(ctx.obj.get("log_level"))
    click.echo("✓ Settings are valid")
    failures = 0

    click.echo(f"\nEndpoints ({config.endpoints_dir}):")
    loader = FileEndpointLoader(config.endpoints_dir)
    for name in loader.names():
        issues = []
        try:
            raw = loader.load(name)
        except ConfigurationError as e:
            click.echo(f"  ✗ {name}: {e.message}")
            failures += 1
            continue
        descriptor = build_descriptor(name, raw, issues) if raw is not None else None
        if descriptor is None:
            click.echo(f"  ✗ {name}: {'; '.join(issues) or 'not loadable'}")
            failures += 1
            continue

        methods = ", ".join(method.value for method in descriptor.allowed_methods) or "none"
        click.echo(f"  ✓ {name} -> {descriptor.table_ref} [{methods}]")
        for issue in issues:
            click.echo(f"    ⚠ {issue}")

    click.echo(f"\nEnvironments ({config.environments_dir}):")
    resolver = EnvironmentResolver.from_directory(config.environments_dir)
    for name in resolver.list_environments():
        try:
            target = resolver.resolve(name)
        except GatewayError as e:
            click.echo(f"  ✗ {name}: {e.message}")
            failures += 1
            continue
        click.echo(f"  ✓ {name}: {mask_connection_string(target.connection_string)}")

    if failures:
        click.echo(f"\n✗ {failures} configuration problem(s) found", err=True)
        sys.exit(1)
    click.echo("\n✓ Configuration is valid")


@cli.command("list-endpoints")
@click.pass_context
def list_endpoints(ctx: click.Context) -> None:
    """List configured endpoints with their effective methods."""
    config = _load_configuration(ctx.obj.get("log_level"))
    loader = FileEndpointLoader(config.endpoints_dir)

    endpoints = EndpointRegistry(loader).list_endpoints()
    if not endpoints:
        click.echo("No endpoints configured")
        return

    for name, descriptor in endpoints.items():
        methods = ", ".join(method.value for method in descriptor.allowed_methods) or "none"
        columns = ", ".join(descriptor.allowed_columns) or "(discovered)"
        click.echo(f"{name}: {descriptor.table_ref} [{methods}]")
        click.echo(f"  Columns: {columns}")
        if descriptor.procedure:
            click.echo(f"  Procedure: {descriptor.procedure}")


@cli.command("generate-token")
@click.argument("username")
@click.pass_context
def generate_token(ctx: click.Context, username: str) -> None:
    """Issue a bearer token for USERNAME."""
    config = _load_configuration(ctx.obj.get("log_level"))
    store = TokenStore(config.token_db, config.tokens_dir)
    token = store.generate_token(username)

    click.echo(f"Token generated for {username}: {token}")
    token_file = store.token_file_path(username)
    if token_file is not None:
        click.echo(f"Saved to: {token_file}")


@cli.command("check-environment")
@click.argument("environment")
@click.pass_context
def check_environment(ctx: click.Context, environment: str) -> None:
    """Resolve ENVIRONMENT and run SELECT 1 against it."""
    config = _load_configuration(ctx.obj.get("log_level"))
    click.echo(f"Checking environment {environment}...")

    try:
        target = EnvironmentResolver.from_directory(config.environments_dir).resolve(environment)
        click.echo(f"  Connection: {mask_connection_string(target.connection_string)}")
        if not SqlServerClient(config).test_connection(target):
            click.echo("✗ Environment check failed: unexpected test query result", err=True)
            sys.exit(1)
    except GatewayError as e:
        click.echo(f"✗ Environment check failed: {e.get_user_message()}", err=True)
        click.echo(f"Technical details: {e.get_technical_details()}", err=True)
        sys.exit(1)

    click.echo("✓ Connection successful")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
