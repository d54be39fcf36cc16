"""SSH command construction for reaching the lab instances."""

import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import ConfigError


@dataclass(frozen=True)
class SshTarget:
    """Connection details for the bastion and the prod server behind it."""

    user: str
    bastion_host: str
    prod_host: str
    private_key: str | None = None
    connect_timeout: int = 10

    def _options(self) -> list[str]:
        options = [
            "-o",
            "BatchMode=yes",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]
        if self.private_key:
            options += ["-i", str(Path(self.private_key).expanduser())]
        return options

    def bastion_command(self, remote_command: str) -> list[str]:
        """argv that runs ``remote_command`` on the bastion."""
        return ["ssh", *self._options(), f"{self.user}@{self.bastion_host}", remote_command]

    def prod_command(self, remote_command: str) -> list[str]:
        """argv that runs ``remote_command`` on the prod server via the bastion."""
        # ProxyCommand rather than -J so the identity file applies to both hops
        proxy = shlex.join(
            ["ssh", *self._options(), "-W", "%h:%p", f"{self.user}@{self.bastion_host}"]
        )
        return [
            "ssh",
            *self._options(),
            "-o",
            f"ProxyCommand={proxy}",
            f"{self.user}@{self.prod_host}",
            remote_command,
        ]

    @classmethod
    def from_outputs(
        cls, outputs: Mapping[str, Any], private_key: str | None = None
    ) -> "SshTarget":
        """Build a target from ``pulumi stack output --json``."""
        missing = [
            key
            for key in ("ssh_user", "bastion_external_ip", "prod_internal_ip")
            if not outputs.get(key)
        ]
        if missing:
            raise ConfigError(f"stack outputs are missing {', '.join(missing)}; run deploy first")
        return cls(
            user=str(outputs["ssh_user"]),
            bastion_host=str(outputs["bastion_external_ip"]),
            prod_host=str(outputs["prod_internal_ip"]),
            private_key=private_key,
        )
