"""Stack configuration for the bastion lab.

Values come from the Pulumi stack config: provider settings live under the
``gcp:`` namespace and lab settings under ``bastion-lab:``. Both the Pulumi
program and the operator CLI validate them through :class:`LabConfig`, so
they always agree on defaults.
"""

import ipaddress
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pulumi
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError

PROJECT_NAMESPACE = "bastion-lab"
DEFAULT_REGION = "us-central1"

# Provider-level keys read from the "gcp:" namespace
_GCP_KEYS = ("project", "region", "zone")
# Lab keys that hold structured values rather than strings
_OBJECT_KEYS = ("labels", "reserved_ranges")

_LABEL_KEY_RE = re.compile(r"^[a-z][a-z0-9_-]{0,62}$")
_LABEL_VALUE_RE = re.compile(r"^[a-z0-9_-]{0,63}$")


class LabConfig(BaseModel):
    """Operator-supplied variables for the lab stack."""

    project: str = Field(min_length=1, description="GCP project ID")
    region: str = Field(default=DEFAULT_REGION, description="GCP region")
    zone: str = Field(default="", description="GCP zone (defaults to <region>-a)")

    network_name: str = "lab-vpc"
    subnet_name: str = "lab-subnet"
    subnet_cidr: str = "10.10.0.0/24"

    bastion_machine_type: str = "e2-micro"
    prod_machine_type: str = "e2-medium"
    boot_image: str = "debian-cloud/debian-12"
    bastion_disk_size_gb: int = Field(default=10, ge=10, le=2000)
    prod_disk_size_gb: int = Field(default=20, ge=10, le=2000)

    ssh_user: str = Field(default="labadmin", pattern=r"^[a-z_][a-z0-9_-]{0,31}$")
    ssh_public_key: str | None = None
    ssh_public_key_path: str | None = None

    labels: dict[str, str] = Field(default_factory=dict)
    reserved_ranges: list[str] = Field(default_factory=list)
    enable_nat: bool = False

    model_config = {"extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def default_zone(cls, data: Any) -> Any:
        """Derive the zone from the region when it is not set."""
        if isinstance(data, dict) and not data.get("zone"):
            region = data.get("region") or DEFAULT_REGION
            data = {**data, "zone": f"{region}-a"}
        return data

    @field_validator("subnet_cidr")
    @classmethod
    def validate_subnet_cidr(cls, v: str) -> str:
        """Subnet must be a normalised IPv4 network."""
        return str(ipaddress.IPv4Network(v, strict=True))

    @field_validator("reserved_ranges")
    @classmethod
    def validate_reserved_ranges(cls, v: list[str]) -> list[str]:
        return [str(ipaddress.ip_network(cidr, strict=True)) for cidr in v]

    @field_validator("labels", mode="before")
    @classmethod
    def validate_labels(cls, v: Any) -> Any:
        """GCE labels: lowercase keys and values, at most 63 characters.

        YAML turns unquoted values such as ``1234`` or ``true`` into numbers
        and booleans; those are rendered back to label strings.
        """
        if not isinstance(v, Mapping):
            return v
        labels = {}
        for key, value in v.items():
            if isinstance(value, bool):
                value = str(value).lower()
            elif isinstance(value, (int, float)):
                value = str(value)
            if not _LABEL_KEY_RE.match(str(key)):
                raise ValueError(f"invalid label key '{key}'")
            if not isinstance(value, str) or not _LABEL_VALUE_RE.match(value):
                raise ValueError(f"invalid value '{value}' for label '{key}'")
            labels[str(key)] = value
        return labels

    @model_validator(mode="after")
    def validate_consistency(self) -> "LabConfig":
        if not self.zone.startswith(f"{self.region}-"):
            raise ValueError(f"zone '{self.zone}' is not in region '{self.region}'")
        if bool(self.ssh_public_key) == bool(self.ssh_public_key_path):
            raise ValueError("set exactly one of ssh_public_key or ssh_public_key_path")
        return self

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "LabConfig":
        """Build a config from Pulumi-style keys.

        Accepts ``gcp:project``, ``bastion-lab:subnet_cidr`` and bare keys.
        Keys from other namespaces and encrypted ``secure:`` values are ignored.
        """
        values: dict[str, Any] = {}
        for raw_key, value in mapping.items():
            namespace, _, key = str(raw_key).rpartition(":")
            if isinstance(value, Mapping) and set(value) == {"secure"}:
                continue
            if namespace == "gcp":
                if key in _GCP_KEYS:
                    values[key] = value
                continue
            if namespace not in ("", PROJECT_NAMESPACE):
                continue
            values[key] = value

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(_format_validation_error(e)) from e

    def public_key(self) -> str:
        """Return the SSH public key, reading it from disk if only a path is set."""
        if self.ssh_public_key:
            key = self.ssh_public_key.strip()
        else:
            path = Path(str(self.ssh_public_key_path)).expanduser()
            try:
                key = path.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise ConfigError(
                    f"cannot read public key from {path}: {e}", key="ssh_public_key_path"
                ) from e

        if len(key.split()) < 2:
            raise ConfigError("public key is not in OpenSSH format", key="ssh_public_key")
        return key

    def ssh_keys_metadata(self) -> str:
        """Value for the instance ``ssh-keys`` metadata entry."""
        return f"{self.ssh_user}:{self.public_key()}"


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "config"
        parts.append(f"{location}: {err['msg']}")
    return "Invalid lab configuration: " + "; ".join(parts)


def load_stack_config() -> LabConfig:
    """Read the running Pulumi stack's configuration."""
    gcp_config = pulumi.Config("gcp")
    config = pulumi.Config()

    values: dict[str, Any] = {"gcp:project": gcp_config.require("project")}
    for key in ("region", "zone"):
        value = gcp_config.get(key)
        if value:
            values[f"gcp:{key}"] = value

    for name in LabConfig.model_fields:
        if name in _GCP_KEYS:
            continue
        if name in _OBJECT_KEYS:
            value = config.get_object(name)
        else:
            value = config.get(name)
        if value is not None:
            values[name] = value

    return LabConfig.from_mapping(values)


def load_config_file(path: str | Path) -> LabConfig:
    """Read a ``Pulumi.<stack>.yaml`` file without invoking the Pulumi engine."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read stack file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"stack file {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"stack file {path} must contain a mapping")
    return LabConfig.from_mapping(data.get("config") or {})
