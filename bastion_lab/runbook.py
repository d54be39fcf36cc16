"""Operator runbook steps.

Each step shells out to ``gcloud``, ``pulumi`` or ``ssh``. Commands are
passed as argv lists (never through a shell) and every invocation is logged.
With ``dry_run`` the commands are logged but not executed.
"""

import json
import re
import shlex
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import CommandFailedError, ConfigError, ToolNotFoundError
from .ssh import SshTarget

logger = structlog.get_logger()

REQUIRED_APIS = [
    "compute.googleapis.com",
    "storage.googleapis.com",
    "iam.googleapis.com",
]

DEPLOYER_ROLES = [
    "roles/compute.admin",
    "roles/storage.admin",
    "roles/iam.serviceAccountUser",
]

# Outputs exported by the Pulumi program
STACK_OUTPUT_KEYS = [
    "project_id",
    "region",
    "zone",
    "network",
    "subnet_cidr",
    "ssh_user",
    "bastion_external_ip",
    "bastion_internal_ip",
    "prod_internal_ip",
    "ssh_command",
]

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9._-]{1,61}[a-z0-9]$")
_SERVICE_ACCOUNT_RE = re.compile(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$")


class RunbookSettings(BaseSettings):
    """Operator defaults loaded from environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="BASTION_LAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    project: str | None = Field(default=None, description="GCP project ID")
    stack: str = Field(default="dev", description="Pulumi stack name")
    work_dir: str = Field(default=".", description="Directory holding Pulumi.yaml")

    state_bucket: str | None = Field(default=None, description="GCS bucket for Pulumi state")
    bucket_location: str = Field(default="US", description="Location for the state bucket")

    service_account: str = Field(default="bastion-lab-deployer")
    key_file: str = Field(default="bastion-lab-sa.json", description="Where to write the SA key")

    ssh_private_key: str | None = Field(default=None, description="Identity file for SSH")
    command_timeout: int = Field(default=900, ge=1, description="Seconds per external command")


@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner:
    """Runs external commands, or only logs them in dry-run mode."""

    def __init__(
        self,
        dry_run: bool = False,
        cwd: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self.dry_run = dry_run
        self.cwd = cwd
        self.timeout = timeout

    def run(self, args: Sequence[str], check: bool = True, stream: bool = False) -> CommandResult:
        """Run ``args``.

        With ``stream`` the command writes straight to the terminal (used for
        long Pulumi operations); otherwise output is captured.
        """
        argv = [str(a) for a in args]
        logger.info("Running command", command=shlex.join(argv), dry_run=self.dry_run)

        if self.dry_run:
            return CommandResult(args=argv, returncode=0)

        if shutil.which(argv[0]) is None:
            raise ToolNotFoundError(argv[0])

        try:
            completed = subprocess.run(
                argv,
                capture_output=not stream,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandFailedError(argv, -1, f"timed out after {self.timeout}s") from e

        result = CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

        if check and completed.returncode != 0:
            logger.error(
                "Command failed",
                command=shlex.join(argv),
                returncode=completed.returncode,
                stderr=result.stderr.strip(),
            )
            raise CommandFailedError(argv, completed.returncode, result.stderr)

        logger.debug("Command finished", command=argv[0], returncode=completed.returncode)
        return result


def service_account_email(project: str, name: str) -> str:
    return f"{name}@{project}.iam.gserviceaccount.com"


def enable_apis(runner: CommandRunner, project: str) -> None:
    """Enable the Compute, Storage and IAM APIs for the project."""
    runner.run(["gcloud", "services", "enable", *REQUIRED_APIS, "--project", project])


def create_service_account(
    runner: CommandRunner, project: str, name: str, key_file: str
) -> str:
    """Create the deployer service account, grant its roles and write a key.

    Returns the service account email.
    """
    if not _SERVICE_ACCOUNT_RE.match(name):
        raise ConfigError(
            "must be 6-30 lowercase letters, digits or hyphens", key="service_account"
        )
    email = service_account_email(project, name)

    runner.run(
        [
            "gcloud",
            "iam",
            "service-accounts",
            "create",
            name,
            "--project",
            project,
            "--display-name",
            "Bastion lab deployer",
        ]
    )

    for role in DEPLOYER_ROLES:
        runner.run(
            [
                "gcloud",
                "projects",
                "add-iam-policy-binding",
                project,
                "--member",
                f"serviceAccount:{email}",
                "--role",
                role,
                "--quiet",
            ]
        )

    runner.run(
        [
            "gcloud",
            "iam",
            "service-accounts",
            "keys",
            "create",
            key_file,
            "--iam-account",
            email,
            "--project",
            project,
        ]
    )

    logger.info("Service account ready", email=email, key_file=key_file)
    return email


def create_state_bucket(runner: CommandRunner, project: str, bucket: str, location: str) -> str:
    """Create a versioned GCS bucket for remote state and log Pulumi into it.

    Returns the ``gs://`` backend URL.
    """
    if not _BUCKET_RE.match(bucket):
        raise ConfigError(
            "must be 3-63 lowercase letters, digits, dots, hyphens or underscores",
            key="state_bucket",
        )
    url = f"gs://{bucket}"

    runner.run(
        [
            "gcloud",
            "storage",
            "buckets",
            "create",
            url,
            "--project",
            project,
            "--location",
            location,
            "--uniform-bucket-level-access",
        ]
    )
    # Versioning keeps prior state snapshots recoverable
    runner.run(["gcloud", "storage", "buckets", "update", url, "--versioning"])
    runner.run(["pulumi", "login", url])

    logger.info("Remote state backend ready", backend=url)
    return url


def preview(runner: CommandRunner, stack: str) -> None:
    runner.run(["pulumi", "preview", "--stack", stack, "--non-interactive"], stream=True)


def deploy(runner: CommandRunner, stack: str) -> None:
    runner.run(["pulumi", "up", "--yes", "--stack", stack, "--non-interactive"], stream=True)


def stack_outputs(runner: CommandRunner, stack: str) -> dict[str, Any]:
    """Return the stack's exported outputs."""
    result = runner.run(["pulumi", "stack", "output", "--json", "--stack", stack])
    if runner.dry_run:
        return {key: f"<{key}>" for key in STACK_OUTPUT_KEYS}

    try:
        outputs = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise CommandFailedError(result.args, 0, f"unparseable stack output: {e}") from e
    if not isinstance(outputs, dict):
        raise CommandFailedError(result.args, 0, "stack output is not a JSON object")
    return outputs


def verify_ssh(runner: CommandRunner, target: SshTarget) -> dict[str, str]:
    """Check SSH to the bastion, then to the prod server through the bastion.

    Returns the hostname each instance reports.
    """
    bastion = runner.run(target.bastion_command("hostname"))
    bastion_hostname = bastion.stdout.strip()
    logger.info("Bastion reachable", host=target.bastion_host, hostname=bastion_hostname)

    prod = runner.run(target.prod_command("hostname"))
    prod_hostname = prod.stdout.strip()
    logger.info("Prod reachable via bastion", host=target.prod_host, hostname=prod_hostname)

    return {"bastion": bastion_hostname, "prod": prod_hostname}


def teardown(
    runner: CommandRunner,
    stack: str,
    project: str | None = None,
    bucket: str | None = None,
    service_account: str | None = None,
) -> None:
    """Destroy the stack, then optionally the state bucket and service account."""
    if service_account and not project:
        raise ConfigError("project is required to delete the service account", key="project")

    runner.run(["pulumi", "destroy", "--yes", "--stack", stack, "--non-interactive"], stream=True)

    if bucket:
        # The bucket holds the state just destroyed; remove every object version
        runner.run(["gcloud", "storage", "rm", "--recursive", "--all-versions", f"gs://{bucket}"])
        logger.info("State bucket deleted", bucket=bucket)

    if service_account:
        email = service_account_email(str(project), service_account)
        runner.run(
            ["gcloud", "iam", "service-accounts", "delete", email, "--project", project, "--quiet"]
        )
        logger.info("Service account deleted", email=email)
