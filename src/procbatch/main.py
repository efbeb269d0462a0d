"""CLI entrypoint for procbatch."""

import logging

import rich_click as click

from procbatch import __version__
from procbatch.config import Settings
from procbatch.controllers import BatchCliController, BatchRunCommand
from procbatch.errors import PreconditionError

click.rich_click.USE_MARKDOWN = True
BATCH_CONTROLLER = BatchCliController()


@click.command(
    context_settings={
        "help_option_names": ["-h", "--help"],
        "ignore_unknown_options": True,
        "allow_extra_args": True,
    },
)
@click.version_option(version=__version__, prog_name="procbatch")
@click.option(
    "-s",
    "skip_secondary",
    is_flag=True,
    default=False,
    help="Tell the worker to skip the secondary output (forwarded as `-s`).",
)
@click.option(
    "-f",
    "force",
    is_flag=True,
    default=False,
    help="Reprocess every input even when its outputs already exist.",
)
@click.option(
    "-j",
    "jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Max concurrent workers. Defaults to PROCBATCH_MAX_PARALLEL or CPU count - 1.",
)
@click.option(
    "-n",
    "niceness",
    type=click.IntRange(min=-20, max=19),
    default=None,
    help="Worker niceness. Takes precedence over PROCBATCH_NICE.",
)
@click.option("-w", "workspace", default=None, help="Workspace override (not supported yet).")
@click.option("-c", "config_name", default=None, help="Configuration override (not supported yet).")
@click.option("-q", "quiet", is_flag=True, default=False, help="Rejected: always forced.")
@click.option("-o", "opt_o", is_flag=True, default=False, help="Rejected: unsupported.")
@click.option("-i", "opt_i", is_flag=True, default=False, help="Rejected: unsupported.")
@click.option("-a", "opt_a", is_flag=True, default=False, help="Rejected: unsupported.")
@click.option(
    "--dry-run/--no-dry-run",
    default=False,
    show_default=True,
    help="Only report which inputs would be dispatched.",
)
@click.pass_context
def procbatch(  # noqa: PLR0913
    ctx: click.Context,
    skip_secondary: bool,
    force: bool,
    jobs: int | None,
    niceness: int | None,
    workspace: str | None,
    config_name: str | None,
    quiet: bool,
    opt_o: bool,
    opt_i: bool,
    opt_a: bool,
    dry_run: bool,
) -> None:
    """Run the worker over every input of the active workspace, a bounded number at a time.

    Inputs whose outputs already exist and are non-empty are skipped unless `-f` is given.
    Workers running longer than PROCBATCH_MAX_DURATION_SECONDS are killed.
    """

    rejected = [
        flag
        for flag, given in (
            ("-w", workspace is not None),
            ("-c", config_name is not None),
            ("-q", quiet),
            ("-o", opt_o),
            ("-i", opt_i),
            ("-a", opt_a),
        )
        if given
    ]
    command = BatchRunCommand(
        skip_secondary_output=skip_secondary,
        force_reprocess=force,
        jobs=jobs,
        niceness=niceness,
        dry_run=dry_run,
        rejected_options=tuple(rejected),
        unknown_options=tuple(ctx.args),
    )
    for warning in BATCH_CONTROLLER.option_warnings(command):
        click.echo(warning, err=True)

    try:
        _configure_logging(Settings.from_env().log_level)
        result = BATCH_CONTROLLER.run(command, on_progress=click.echo)
    except (PreconditionError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    procbatch()
