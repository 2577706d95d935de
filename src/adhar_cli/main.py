"""CLI main entry point."""

import click

from . import __version__
from .commands import cluster, config, down, up
from .shared.logging import configure_logging, level_for_verbosity


@click.group()
@click.option("-f", "--file", "config_path", type=click.Path(), help="Platform configuration file")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress output")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--log-file", type=click.Path(), help="Write logs to a file")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    verbose: int,
    quiet: bool,
    json_output: bool,
    log_file: str | None,
    log_json: bool,
) -> None:
    """Adhar internal developer platform CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json_output"] = json_output
    configure_logging(level_for_verbosity(verbose), log_file=log_file, json_output=log_json)


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"adhar version {__version__}")


cli.add_command(up)
cli.add_command(down)
cli.add_command(cluster)
cli.add_command(config)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
