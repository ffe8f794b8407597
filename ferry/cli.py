"""Ferry CLI.

Commands:
    serve   - Run the demo upload server with uvicorn
    config  - Show the effective upload configuration
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Tuple

import click

from . import __version__
from .config import ConfigError, ConfigLoader


def _load_config(config_files: Tuple[str, ...], env_file: Optional[str]):
    try:
        loader = ConfigLoader.load(paths=list(config_files), env_file=env_file)
        return loader.upload_config()
    except ConfigError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version=__version__, prog_name="ferry")
def cli() -> None:
    """Multipart upload ingestion for ASGI applications."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind host")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port")
@click.option("--config", "config_files", multiple=True, type=click.Path(), help="JSON/YAML config file")
@click.option("--env-file", type=click.Path(), default=None, help=".env file with FERRY_* settings")
@click.option("--log-level", default="info", show_default=True,
              type=click.Choice(["debug", "info", "warning", "error"]))
@click.option("--debug", is_flag=True, help="Expose internal fault messages")
def serve(host, port, config_files, env_file, log_level, debug) -> None:
    """Run the demo upload server."""
    import uvicorn

    from .demo import create_app

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    config = _load_config(config_files, env_file)

    logging.getLogger("ferry.cli").info(
        "Starting upload server on %s:%s (max_body_bytes=%d)",
        host, port, config.limits.max_body_bytes,
    )
    uvicorn.run(
        create_app(config, debug=debug),
        host=host,
        port=port,
        log_level=log_level,
    )


@cli.command("config")
@click.option("--config", "config_files", multiple=True, type=click.Path(), help="JSON/YAML config file")
@click.option("--env-file", type=click.Path(), default=None, help=".env file with FERRY_* settings")
def show_config(config_files, env_file) -> None:
    """Show the effective upload configuration."""
    config = _load_config(config_files, env_file)
    click.echo(json.dumps({
        "max_body_bytes": config.limits.max_body_bytes,
        "read_chunk_bytes": config.limits.read_chunk_bytes,
        "read_timeout_ms": config.limits.read_timeout_ms,
        "max_part_header_bytes": config.limits.max_part_header_bytes,
        "max_parts": config.limits.max_parts,
        "tmp_dir": str(config.tmp_dir) if config.tmp_dir else None,
        "upload_dir": str(config.upload_dir),
        "static_prefix": config.static_prefix,
    }, indent=2))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
