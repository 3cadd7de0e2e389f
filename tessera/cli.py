"""Tessera CLI - Main Entry Point.

The `tessera` command inspects session cookies and serves a demo app.

Commands:
    sign    - Sign a session id into a cookie value
    unsign  - Verify a cookie value and print its session id
    demo    - Serve the demo counter app with uvicorn
"""

import logging
import sys
from typing import Optional

import click

from . import __version__
from .signing import SIGNED_PREFIX, CookieSigner

logger = logging.getLogger("tessera.cli")


@click.group()
@click.version_option(version=__version__, prog_name="tessera")
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, verbose: bool):
    """Server-side sessions for ASGI applications."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ============================================================================
# Commands
# ============================================================================

@cli.command('sign')
@click.argument('session_id')
@click.option('--secret', '-s', required=True, envvar='TESSERA_SECRET', help='Signing secret')
def sign(session_id: str, secret: str):
    """
    Sign a session id.

    Examples:
      tessera sign abc123 --secret keyboard-cat
    """
    click.echo(SIGNED_PREFIX + CookieSigner(secret).sign(session_id))


@cli.command('unsign')
@click.argument('value')
@click.option('--secret', '-s', 'secrets', multiple=True, required=True,
              help='Verification secret (repeat to rotate)')
def unsign(value: str, secrets: tuple):
    """
    Verify a signed cookie value.

    Exits with status 1 when no secret validates the signature.

    Examples:
      tessera unsign 's:abc123.tag' -s new-secret -s old-secret
    """
    session_id = None
    if value.startswith(SIGNED_PREFIX):
        session_id = CookieSigner(list(secrets)).unsign(value[len(SIGNED_PREFIX):])
    if session_id is None:
        click.echo("Invalid signature", err=True)
        sys.exit(1)
    click.echo(session_id)


@cli.command('demo')
@click.option('--host', type=str, default='127.0.0.1', help='Server host')
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--env-file', type=click.Path(dir_okay=False), default='.env', help='Env file to load')
@click.option('--rolling', is_flag=True, help='Re-send the cookie on every response')
@click.pass_context
def demo(ctx, host: str, port: int, env_file: Optional[str], rolling: bool):
    """
    Serve the demo counter app.

    Examples:
      tessera demo --port 8080
      TESSERA_COOKIE__MAX_AGE=60000 tessera demo --rolling
    """
    import uvicorn

    from .config import load_config
    from .demo import create_demo_app

    config = load_config(env_file=env_file)
    if rolling:
        config.rolling = True

    logger.debug(f"Demo session config: name={config.name} rolling={config.rolling} cookie={config.cookie!r}")
    app = create_demo_app(config)

    click.echo(f"Serving demo on http://{host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="debug" if ctx.obj['verbose'] else "info",
    )


def main():
    """Entry point for `tessera` command."""
    cli(obj={})


if __name__ == '__main__':
    main()
