# Simple CLI for the Cosmos client
import asyncio
import json
import click

from app.main import ClientApplication
from services.auth.exceptions import (
    ApiError,
    AuthenticationError,
    CredentialStorageError,
    TransportError,
)


def _run(coro):
    """Run a coroutine, turning client errors into a clean CLI failure."""
    try:
        return asyncio.run(coro)
    except (AuthenticationError, ApiError, TransportError, CredentialStorageError) as e:
        raise click.ClickException(f"{type(e).__name__}: {e.message}") from e


@click.group()
def cli():
    """Cosmos client CLI"""
    pass


@cli.command()
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True)
def login(email, password):
    """Log in and store the credential pair"""
    async def _login():
        app = ClientApplication()
        await app.startup(restore_session=False)
        try:
            profile = await app.auth_service.login(email, password)
        finally:
            await app.shutdown()
        click.echo(f"Logged in as {profile.client_name or profile.email}")

    _run(_login())


@cli.command()
def logout():
    """Log out and clear stored credentials"""
    async def _logout():
        app = ClientApplication()
        await app.startup(restore_session=False)
        try:
            await app.auth_service.logout()
        finally:
            await app.shutdown()
        click.echo("Logged out")

    _run(_logout())


@cli.command()
def status():
    """Validate the stored session"""
    async def _status():
        async with ClientApplication() as app:
            click.echo(app.auth_service.status.value)

    _run(_status())


@cli.command()
def whoami():
    """Show the logged-in client profile"""
    async def _whoami():
        async with ClientApplication() as app:
            if not app.auth_service.is_authenticated():
                raise click.ClickException("Not logged in")
            click.echo(json.dumps(app.auth_service.profile.summary(), indent=2))

    _run(_whoami())


@cli.command()
@click.argument("path")
@click.option("--param", "-p", multiple=True, help="Query parameter as key=value")
def get(path, param):
    """Perform an authenticated GET and print the JSON body"""
    params = {}
    for item in param:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--param")
        params[key] = value

    async def _get():
        app = ClientApplication()
        await app.startup(restore_session=False)
        try:
            response = await app.pipeline.get(path, params=params or None)
        finally:
            await app.shutdown()
        response.raise_for_status()
        click.echo(json.dumps(response.json(), indent=2))

    _run(_get())


if __name__ == "__main__":
    cli()
