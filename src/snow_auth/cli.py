"""Command-line interface for snow-auth.

Provides commands to log in, refresh, list and remove stored credentials.
"""

from __future__ import annotations

import asyncio
import sys

import typer

from snow_auth import __version__
from snow_auth.config import Config, ConfigError, load_config
from snow_auth.logging_config import get_logger, setup_logging
from snow_auth.oauth.orchestrator import AuthResult, ServiceNowOAuth
from snow_auth.store import SERVICENOW_PROVIDER_ID, CredentialStore, CredentialStoreError

app = typer.Typer(
    name="snow-auth",
    help="Authenticate against a ServiceNow instance and manage stored credentials",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"snow-auth version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """snow-auth CLI."""


def _load(config_path: str | None, log_level: str | None, **overrides: object) -> Config:
    cli_args: dict[str, object] = {"log_level": log_level, **overrides}
    try:
        config = load_config(path=config_path, cli_args=cli_args)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None
    setup_logging(config)
    return config


def _report(result: AuthResult, success_message: str) -> None:
    if result.success:
        typer.echo(success_message)
        return
    kind = result.error_kind.value if result.error_kind else "error"
    typer.echo(f"Authentication failed ({kind}): {result.error}", err=True)
    raise typer.Exit(code=1)


async def _prompt_for_code(auth_url: str) -> str | None:
    typer.echo(f"\n{auth_url}\n")
    try:
        return typer.prompt("Paste the authorization code (or the full redirect URL)")
    except typer.Abort:
        return None


async def _login(config: Config, instance: str, client_id: str, client_secret: str, paste: bool) -> AuthResult:
    oauth = ServiceNowOAuth(config)
    try:
        if paste:
            return await oauth.authenticate_with_code(
                instance, client_id, client_secret, _prompt_for_code
            )
        return await oauth.authenticate(instance, client_id, client_secret)
    finally:
        await oauth.close()


@app.command()
def login(
    instance: str = typer.Option(..., "--instance", "-i", help="Instance name or URL"),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client ID"),
    client_secret: str = typer.Option(
        ..., "--client-secret", prompt=True, hide_input=True, help="OAuth client secret"
    ),
    no_browser: bool = typer.Option(False, "--no-browser", help="Do not launch a browser"),
    paste: bool = typer.Option(
        False, "--paste", help="Paste the authorization code instead of using the local listener"
    ),
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (JSON or YAML)"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level override"),
) -> None:
    """Log in with OAuth 2.0 (Authorization Code + PKCE)."""
    overrides: dict[str, object] = {}
    if no_browser:
        overrides["open_browser"] = False
    config = _load(config_path, log_level, **overrides)

    try:
        result = asyncio.run(_login(config, instance, client_id, client_secret, paste))
    except CredentialStoreError as e:
        typer.echo(f"Could not save credentials: {e}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        get_logger(__name__).info("Login interrupted")
        raise typer.Exit(code=130) from None

    _report(result, "Authentication successful. Tokens saved.")


async def _refresh(config: Config, provider: str) -> AuthResult:
    oauth = ServiceNowOAuth(config, provider_id=provider)
    try:
        return await oauth.refresh()
    finally:
        await oauth.close()


@app.command()
def refresh(
    provider: str = typer.Option(SERVICENOW_PROVIDER_ID, "--provider", "-p", help="Provider ID"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level override"),
) -> None:
    """Refresh a stored OAuth access token."""
    config = _load(config_path, log_level)
    try:
        result = asyncio.run(_refresh(config, provider))
    except CredentialStoreError as e:
        typer.echo(f"Could not save credentials: {e}", err=True)
        raise typer.Exit(code=1) from None
    _report(result, f"Refreshed access token for {provider}.")


@app.command("list")
def list_credentials(
    config_path: str | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """List stored credentials."""
    config = _load(config_path, None)
    store = CredentialStore(config.store_path)
    credentials = asyncio.run(store.all())

    typer.echo(f"Credentials {config.store_path}")
    if not credentials:
        typer.echo("  (none)")
        return
    for provider_id, credential in credentials.items():
        typer.echo(f"  {provider_id}  {credential.type}")


@app.command()
def logout(
    provider: str = typer.Argument(..., help="Provider ID to remove"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Configuration file"),
) -> None:
    """Remove a stored credential."""
    config = _load(config_path, None)
    store = CredentialStore(config.store_path)

    if asyncio.run(store.get(provider)) is None:
        typer.echo(f"No credential stored for {provider}", err=True)
        raise typer.Exit(code=1)

    try:
        asyncio.run(store.remove(provider))
    except CredentialStoreError as e:
        typer.echo(f"Could not update credentials: {e}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Logout successful")


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"snow-auth version {__version__}")
    typer.echo(f"Python {sys.version}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
