"""Command line entry point: run the service or talk to a running one."""

from __future__ import annotations

import json
import mimetypes
from contextlib import ExitStack
from pathlib import Path

import click
import httpx

from bucketd.config import get_settings

MIN_TOKEN_LENGTH = 32


@click.group()
def cli():
    """Ephemeral bucket store."""
    pass


# --- Server ---


@cli.command()
@click.argument("token", required=False)
@click.option("--disable-security", is_flag=True, help="Allow public access to every endpoint.")
@click.option("--host", default=None, help="Bind address (default from BUCKETD_HOST).")
@click.option("--port", type=int, default=None, help="Port (default from BUCKETD_PORT).")
def serve(token: str | None, disable_security: bool, host: str | None, port: int | None):
    """Run the service, protected by TOKEN (at least 32 characters)."""
    import uvicorn

    from bucketd.main import create_app

    if disable_security:
        token = ""
        click.echo("Warning!!! Security is disabled for this service! It allows public access to all service functionality!")
        click.echo(f"To enable security, pass a secure token (at least {MIN_TOKEN_LENGTH} chars) instead of --disable-security.")
    elif not token or len(token) < MIN_TOKEN_LENGTH:
        raise click.UsageError(
            f"Pass a secure token of at least {MIN_TOKEN_LENGTH} characters, or --disable-security."
        )

    settings = get_settings().model_copy(update={"access_token": token})
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
    )


# --- Client helpers ---


def _client(url: str, token: str | None) -> httpx.Client:
    headers = {"X-Auth-Token": token} if token else {}
    return httpx.Client(base_url=url, headers=headers, timeout=60.0)


def _parse_meta(pairs: tuple[str, ...]) -> dict[str, str]:
    meta = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--meta")
        meta[key] = value
    return meta


def _echo_response(resp: httpx.Response) -> None:
    try:
        body = json.dumps(resp.json())
    except ValueError:
        body = resp.text
    click.echo(f"{resp.status_code} : {body}")


def _send(client: httpx.Client, path: str, files: tuple[str, ...], meta: dict[str, str]) -> httpx.Response:
    if not files:
        return client.post(path, json=meta or None)

    with ExitStack() as stack:
        parts = []
        for name in files:
            p = Path(name)
            mime = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
            parts.append(("file", (p.name, stack.enter_context(p.open("rb")), mime)))
        return client.post(path, files=parts, data=meta)


def client_options(fn):
    fn = click.option(
        "--token", envvar="BUCKETD_ACCESS_TOKEN", default=None, help="Shared access token."
    )(fn)
    fn = click.option(
        "--url", envvar="BUCKETD_URL", default="http://localhost:3000", show_default=True
    )(fn)
    return fn


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--ttl", type=int, default=None, help="Lifetime in minutes.")
@click.option("--meta", multiple=True, help="Metadata as key=value; repeatable.")
@client_options
def create(files, ttl, meta, url, token):
    """Create a bucket, optionally with FILES."""
    path = f"/?ttl={ttl}" if ttl else "/"
    with _client(url, token) as client:
        _echo_response(_send(client, path, files, _parse_meta(meta)))


@cli.command()
@click.argument("bucket_id")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--meta", multiple=True, help="Metadata as key=value; replaces existing metadata.")
@client_options
def upload(bucket_id, files, meta, url, token):
    """Upload FILES into an existing bucket."""
    with _client(url, token) as client:
        _echo_response(_send(client, f"/{bucket_id}", files, _parse_meta(meta)))


@cli.command()
@click.argument("bucket_id")
@client_options
def info(bucket_id, url, token):
    """Show bucket info."""
    with _client(url, token) as client:
        _echo_response(client.get(f"/{bucket_id}/info"))


@cli.command()
@click.argument("bucket_id")
@click.argument("dest", type=click.Path(dir_okay=False, writable=True))
@client_options
def download(bucket_id, dest, url, token):
    """Save the bucket's zip archive to DEST."""
    with _client(url, token) as client:
        with client.stream("GET", f"/{bucket_id}") as resp:
            if resp.status_code != 200:
                resp.read()
                _echo_response(resp)
                raise SystemExit(1)
            with open(dest, "wb") as fh:
                for chunk in resp.iter_bytes():
                    fh.write(chunk)
    click.echo(f"Result: 200 -> {dest}")


@cli.command()
@click.argument("bucket_id")
@client_options
def delete(bucket_id, url, token):
    """Delete a bucket."""
    with _client(url, token) as client:
        _echo_response(client.delete(f"/{bucket_id}"))


if __name__ == "__main__":
    cli()
