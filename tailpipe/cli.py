"""CLI entry point for tailpipe.

Commands:
    tailpipe run          — watch a directory and route new JSONL records
    tailpipe init-config  — write a sample configuration file
    tailpipe plugins      — list registered plugin kinds
"""

import asyncio
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click

from tailpipe.config import CONFIG_PATH, LOG_LEVEL

logger = logging.getLogger("tailpipe")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _package_version() -> str:
    try:
        return version("tailpipe")
    except PackageNotFoundError:
        return "0.0.0"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(_package_version(), prog_name="tailpipe")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """tailpipe — tail a directory of JSONL logs through filter/output pipelines."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    level = logging.DEBUG if verbose else _LEVELS.get(LOG_LEVEL.lower(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _apply_log_level(level_name: str, verbose: bool) -> None:
    """Config-file log level applies unless --verbose or TAILPIPE_LOG_LEVEL set one."""
    if verbose or LOG_LEVEL:
        return
    logging.getLogger().setLevel(_LEVELS.get(level_name, logging.INFO))


# ------------------------------------------------------------------
# tailpipe run
# ------------------------------------------------------------------


@cli.command()
@click.argument("config_arg", required=False, metavar="[CONFIG]")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    help=f"Config file (default: {CONFIG_PATH}, or TAILPIPE_CONFIG_PATH).",
)
@click.option("--watch-dir", default=None, help="Override the watch directory from the config.")
@click.option("--once", is_flag=True, help="Read existing files once and exit (no continuous watch).")
@click.pass_context
def run(
    ctx: click.Context,
    config_arg: str | None,
    config_path: str | None,
    watch_dir: str | None,
    once: bool,
) -> None:
    """Watch a directory and route new records through the configured pipelines."""
    from tailpipe.errors import ConfigurationError
    from tailpipe.loader import load_config

    path = config_path or config_arg or CONFIG_PATH
    try:
        config = load_config(path, watch_directory=watch_dir)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _apply_log_level(config.options.log_level, ctx.obj.get("verbose", False))

    if not config.watch_directory.is_dir():
        click.echo(f"Error: Watch directory does not exist: {config.watch_directory}", err=True)
        sys.exit(1)

    try:
        asyncio.run(_run_async(config, once))
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


async def _run_async(config, once: bool) -> None:
    from tailpipe.server import TailServer

    server = TailServer(config)

    if once:
        click.echo(f"Scanning {config.watch_directory} (once mode)…")
        count = await server.scan_once()
        click.echo(f"Done. Files: {count}")
        return

    click.echo(f"Watching {config.watch_directory} (Ctrl+C to stop)…")
    click.echo(f"  Pipelines: {len(config.pipelines)}")
    click.echo(f"  Buffering: {'on' if config.options.enable_buffering else 'off'}")

    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGTERM handler not supported on this platform")

    await server.serve_forever()
    click.echo("Stopped.")


# ------------------------------------------------------------------
# tailpipe init-config
# ------------------------------------------------------------------


@cli.command("init-config")
@click.argument("path", default="config.json")
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def init_config(path: str, force: bool) -> None:
    """Write a sample config to PATH ('-' prints it)."""
    from tailpipe.loader import sample_config

    content = sample_config()
    if path == "-":
        click.echo(content, nl=False)
        return

    target = Path(path)
    if target.exists() and not force:
        click.echo(f"Error: {target} already exists (use --force to overwrite).", err=True)
        sys.exit(1)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    click.echo(f"Wrote sample config to {target}")


# ------------------------------------------------------------------
# tailpipe plugins
# ------------------------------------------------------------------


@cli.command()
def plugins() -> None:
    """List registered plugin kinds."""
    from tailpipe.plugins.registry import available_plugins

    for kind, category in available_plugins().items():
        click.echo(f"{category:<7} {kind}")


if __name__ == "__main__":
    cli()
