"""bastion-lab - operator CLI for the bastion lab stack.

Wraps the runbook: project bootstrap (APIs, service account, state bucket),
policy checks, deploy, SSH verification, load simulation and teardown.
"""

import sys
from pathlib import Path
from typing import Any

import click
import structlog

from . import __version__, loadtest, runbook
from .config import load_config_file
from .exceptions import LabError
from .log import configure_logging
from .policy import check_topology
from .ssh import SshTarget
from .topology import build_topology

logger = structlog.get_logger()


class LabContext:
    """State shared between commands."""

    def __init__(self, settings: runbook.RunbookSettings, dry_run: bool) -> None:
        self.settings = settings
        self.runner = runbook.CommandRunner(
            dry_run=dry_run,
            cwd=settings.work_dir,
            timeout=settings.command_timeout,
        )

    def project(self, override: str | None) -> str:
        project = override or self.settings.project
        if not project:
            raise click.UsageError("Missing project: pass --project or set BASTION_LAB_PROJECT")
        return project

    def stack(self, override: str | None) -> str:
        return override or self.settings.stack


class LabGroup(click.Group):
    """Click group that turns lab errors into a message and exit code 1."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except LabError as e:
            logger.error("Command failed", error=str(e))
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)


pass_lab = click.make_pass_decorator(LabContext)

project_option = click.option("--project", default=None, help="GCP project ID")
stack_option = click.option("--stack", default=None, help="Pulumi stack name")


@click.group(cls=LabGroup)
@click.version_option(version=__version__, prog_name="bastion-lab")
@click.option("--dry-run", is_flag=True, help="Log commands without running them")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, dry_run: bool, verbose: bool) -> None:
    """Bastion lab - a public bastion in front of a private prod server on GCP."""
    configure_logging(verbose)
    ctx.obj = LabContext(runbook.RunbookSettings(), dry_run)


@cli.command()
@stack_option
@click.option(
    "--file",
    "stack_file",
    type=click.Path(path_type=Path),
    default=None,
    help="Stack config file (defaults to Pulumi.<stack>.yaml in the work dir)",
)
@pass_lab
def check(lab: LabContext, stack: str | None, stack_file: Path | None) -> None:
    """Validate the declared topology against the SSH access policy."""
    stack_name = lab.stack(stack)
    path = stack_file or Path(lab.settings.work_dir) / f"Pulumi.{stack_name}.yaml"

    config = load_config_file(path)
    topology = build_topology(config)
    violations = check_topology(topology, config.reserved_ranges)

    if violations:
        for violation in violations:
            click.echo(f"FAIL {violation}")
        click.echo(f"{len(violations)} violation(s) in {path}", err=True)
        sys.exit(1)

    click.echo(
        f"OK {path}: {len(topology.firewall_rules)} firewall rules, "
        f"{len(topology.instances)} instances, subnet {topology.subnet.ip_cidr_range}"
    )


@cli.command("enable-apis")
@project_option
@pass_lab
def enable_apis(lab: LabContext, project: str | None) -> None:
    """Enable the Compute, Storage and IAM APIs."""
    runbook.enable_apis(lab.runner, lab.project(project))


@cli.command("create-service-account")
@project_option
@click.option("--name", default=None, help="Service account ID")
@click.option("--key-file", default=None, help="Where to write the JSON key")
@pass_lab
def create_service_account(
    lab: LabContext, project: str | None, name: str | None, key_file: str | None
) -> None:
    """Create the deployer service account and its key."""
    email = runbook.create_service_account(
        lab.runner,
        lab.project(project),
        name or lab.settings.service_account,
        key_file or lab.settings.key_file,
    )
    click.echo(email)


@cli.command("create-state-bucket")
@project_option
@click.option("--bucket", default=None, help="State bucket name")
@click.option("--location", default=None, help="Bucket location")
@pass_lab
def create_state_bucket(
    lab: LabContext, project: str | None, bucket: str | None, location: str | None
) -> None:
    """Create a versioned GCS bucket and use it as the Pulumi backend."""
    bucket_name = bucket or lab.settings.state_bucket
    if not bucket_name:
        raise click.UsageError("Missing bucket: pass --bucket or set BASTION_LAB_STATE_BUCKET")
    url = runbook.create_state_bucket(
        lab.runner,
        lab.project(project),
        bucket_name,
        location or lab.settings.bucket_location,
    )
    click.echo(url)


@cli.command()
@stack_option
@pass_lab
def preview(lab: LabContext, stack: str | None) -> None:
    """Show the changes Pulumi would make."""
    runbook.preview(lab.runner, lab.stack(stack))


@cli.command()
@stack_option
@pass_lab
def deploy(lab: LabContext, stack: str | None) -> None:
    """Create or update the lab resources."""
    runbook.deploy(lab.runner, lab.stack(stack))


def _ssh_target(lab: LabContext, stack: str | None, identity: str | None) -> SshTarget:
    outputs = runbook.stack_outputs(lab.runner, lab.stack(stack))
    return SshTarget.from_outputs(outputs, private_key=identity or lab.settings.ssh_private_key)


@cli.command("verify-ssh")
@stack_option
@click.option("-i", "--identity", default=None, help="SSH private key")
@pass_lab
def verify_ssh(lab: LabContext, stack: str | None, identity: str | None) -> None:
    """SSH to the bastion, then through it to the prod server."""
    target = _ssh_target(lab, stack, identity)
    hostnames = runbook.verify_ssh(lab.runner, target)
    click.echo(f"bastion: {hostnames['bastion'] or target.bastion_host}")
    click.echo(f"prod: {hostnames['prod'] or target.prod_host}")


@cli.command("load-test")
@stack_option
@click.option("-i", "--identity", default=None, help="SSH private key")
@click.option(
    "--sessions", default=loadtest.DEFAULT_SESSIONS, show_default=True, type=click.IntRange(1)
)
@click.option(
    "--hold",
    "hold_seconds",
    default=loadtest.DEFAULT_HOLD_SECONDS,
    show_default=True,
    type=click.IntRange(0),
    help="Seconds each session stays open",
)
@click.option("--command", "remote_command", default="uptime", show_default=True)
@click.option("--timeout", default=None, type=float, help="Per-session timeout in seconds")
@pass_lab
def load_test(
    lab: LabContext,
    stack: str | None,
    identity: str | None,
    sessions: int,
    hold_seconds: int,
    remote_command: str,
    timeout: float | None,
) -> None:
    """Open concurrent SSH sessions to the prod server through the bastion."""
    target = _ssh_target(lab, stack, identity)
    if lab.runner.dry_run:
        argv = target.prod_command(loadtest.session_command(remote_command, hold_seconds))
        click.echo(f"would open {sessions} sessions: {' '.join(argv)}")
        return

    report = loadtest.run_load_test(
        target,
        sessions=sessions,
        hold_seconds=hold_seconds,
        command=remote_command,
        timeout=timeout,
    )
    summary = report.summary()
    click.echo(
        f"{summary['succeeded']}/{summary['total']} sessions succeeded "
        f"(p50 {summary['p50_seconds']}s, max {summary['max_seconds']}s)"
    )
    if report.failed:
        sys.exit(1)


@cli.command()
@stack_option
@project_option
@click.option("--delete-state-bucket", is_flag=True, help="Also delete the state bucket")
@click.option("--delete-service-account", is_flag=True, help="Also delete the deployer SA")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@pass_lab
def teardown(
    lab: LabContext,
    stack: str | None,
    project: str | None,
    delete_state_bucket: bool,
    delete_service_account: bool,
    yes: bool,
) -> None:
    """Destroy every lab resource."""
    stack_name = lab.stack(stack)
    if not yes and not lab.runner.dry_run:
        click.confirm(f"Destroy all resources in stack '{stack_name}'?", abort=True)

    bucket = None
    if delete_state_bucket:
        bucket = lab.settings.state_bucket
        if not bucket:
            raise click.UsageError("Set BASTION_LAB_STATE_BUCKET to delete the state bucket")

    runbook.teardown(
        lab.runner,
        stack_name,
        project=lab.project(project) if delete_service_account else project,
        bucket=bucket,
        service_account=lab.settings.service_account if delete_service_account else None,
    )


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
