"""
Provisioner — CLI entrypoint.

Usage:
    python -m provisioner.main --help
    python -m provisioner.main run config.yaml
    python -m provisioner.main status
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import (
    LOG_FILE_ENV,
    LOG_FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)
from provisioner.core.persistence.state_file import DEFAULT_STATE_DIR


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_STATE_DIR,
    show_default=True,
    help="Directory for provisioner state. Used for persisting progress across "
    "reboots and for step working data; its size scales with the inputs.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    state_dir: Path,
) -> None:
    """Provisioner — run reboot-resilient provisioning steps on this host."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["state_dir"] = state_dir

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(LOG_FILE_ENV),
        log_file_level=os.environ.get(LOG_FILE_LEVEL_ENV),
    )


@cli.command()
@click.argument("config", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--root-dir", default=None, help="Root filesystem directory (default: /).")
@click.option("--docker", "docker_cmd", default=None, help="Path to docker.")
@click.option("--systemctl", "systemctl_cmd", default=None, help="Path to systemctl.")
@click.option("--journalctl", "journalctl_cmd", default=None, help="Path to journalctl.")
@click.option("--mount", "mount_cmd", default=None, help="Path to mount.")
@click.option("--mock", is_flag=True, help="Record commands instead of running them.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    config: Path,
    root_dir: str | None,
    docker_cmd: str | None,
    systemctl_cmd: str | None,
    journalctl_cmd: str | None,
    mount_cmd: str | None,
    mock: bool,
    as_json: bool,
) -> None:
    """Run the configured steps, resuming after the last completed one.

    Examples:

        provisioner run /var/lib/provisioner/config.yaml

        provisioner --state-dir /tmp/state run config.yaml --mock --root-dir /tmp/root
    """
    from provisioner.adapters.mock import MockCommandRunner
    from provisioner.core.models.deps import Dependencies
    from provisioner.core.use_cases.run import run_provisioning

    if mock and not root_dir:
        raise click.UsageError("--mock still writes files under the root directory; pass --root-dir too.")

    deps = Dependencies.resolve(
        docker_cmd=docker_cmd,
        journalctl_cmd=journalctl_cmd,
        mount_cmd=mount_cmd,
        systemctl_cmd=systemctl_cmd,
        root_dir=root_dir,
    )
    runner = MockCommandRunner() if mock else None

    result = run_provisioning(
        config_path=config,
        state_dir=ctx.obj["state_dir"],
        deps=deps,
        runner=runner,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            sys.exit(1)
        return

    report = result.report
    quiet = ctx.obj.get("quiet", False)
    mode_label = "[mock] " if mock else ""

    if not quiet:
        click.secho(f"\n⚙️  {mode_label}provision — {config}", fg="cyan", bold=True)
        click.echo(f"   State: {result.state_dir}")
        click.echo(f"   Steps: {result.steps_configured}")
        click.echo()

    if report:
        for outcome in report.outcomes:
            label = f"{outcome.index}: {outcome.type}"
            timing = f" ({outcome.duration_ms}ms)" if outcome.duration_ms else ""
            if outcome.status == "ok":
                click.secho(f"   ✓ {label}", fg="green", nl=False)
                click.echo(timing)
            elif outcome.status == "failed":
                click.secho(f"   ✗ {label}", fg="red", nl=False)
                click.echo(timing)
                for line in (outcome.error or "").split("\n")[:5]:
                    click.echo(f"     │ {line}")
            else:
                click.secho(f"   ⊘ {label} ", fg="yellow", nl=False)
                click.echo("(already complete)")

    if not result.ok:
        click.echo()
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if mock and ctx.obj.get("verbose") and runner is not None:
        click.echo()
        click.secho("   Commands:", bold=True)
        for command in runner.commands:
            click.echo(f"     $ {' '.join(command)}")

    click.echo()
    click.secho("   ✅ Provisioning complete", fg="green", bold=True)
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show recorded provisioning progress."""
    from provisioner.core.use_cases.status import get_status, step_history

    result = get_status(ctx.obj["state_dir"])

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.state is None:
        click.secho(f"No provisioning state in {result.state_dir}", fg="yellow")
        return

    state = result.state
    click.secho(f"\n📋 {result.state_dir}", fg="cyan", bold=True)
    click.echo(f"   Updated: {state.updated_at}")
    click.echo(f"   Progress: {state.completed_count}/{len(state.steps)} steps complete")
    click.echo()

    colors = {"ok": "green", "failed": "red", "running": "yellow", "pending": "white"}
    for record in state.steps:
        marker = " ← next" if record.index == result.next_step else ""
        click.secho(f"   • {record.index}: {record.type} ", nl=False)
        click.secho(record.status, fg=colors.get(record.status, "white"), nl=False)
        attempts = f" ({record.attempts} attempts)" if record.attempts > 1 else ""
        click.echo(f"{attempts}{marker}")
        if ctx.obj.get("verbose") and record.attempts > 1:
            for entry in step_history(result.state_dir, record.index):
                click.echo(f"     │ attempt {entry.attempt}: {entry.status} {entry.error or ''}".rstrip())
        elif record.error and ctx.obj.get("verbose"):
            click.echo(f"     │ {record.error}")

    if state.last_run.status:
        click.echo()
        click.echo(f"   Last run: {state.last_run.status} at {state.last_run.ended_at}")

    click.echo()


@cli.command()
@click.option("--yes", is_flag=True, help="Don't ask for confirmation.")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Forget recorded progress; the next run starts from the first step."""
    from provisioner.core.use_cases.status import reset_state

    state_dir: Path = ctx.obj["state_dir"]
    if not yes:
        click.confirm(f"Reset provisioning state in {state_dir}?", abort=True)

    if reset_state(state_dir):
        click.secho(f"🗑️  State reset in {state_dir}", fg="green")
    else:
        click.echo(f"Nothing to reset in {state_dir}")


if __name__ == "__main__":
    cli()
