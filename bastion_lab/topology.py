"""Static resource records for the lab.

The topology is plain data derived from a :class:`LabConfig`. The Pulumi
stacks render it into ``pulumi_gcp`` resources and the policy checks inspect
it directly, so the access model can be verified without the engine.
"""

from typing import Literal

from pydantic import BaseModel, Field

from .config import LabConfig

InstanceRole = Literal["bastion", "prod"]

INTERNET_SSH_RULE = "allow-ssh-from-internet"
INTERNAL_SSH_RULE = "allow-internal-ssh"
ANYWHERE = "0.0.0.0/0"
SSH_PORT = "22"


class NetworkSpec(BaseModel):
    name: str
    auto_create_subnetworks: bool = False
    description: str = ""


class SubnetSpec(BaseModel):
    name: str
    ip_cidr_range: str
    region: str
    network: str


class FirewallRuleSpec(BaseModel):
    """An allow rule attached to the lab network."""

    name: str
    network: str
    protocol: str = "tcp"
    ports: list[str] = Field(default_factory=list)
    source_ranges: list[str] = Field(default_factory=list)
    target_tags: list[str] = Field(default_factory=list)
    priority: int = 1000
    description: str = ""


class InstanceSpec(BaseModel):
    """A compute instance attached to the lab subnet."""

    name: str
    role: InstanceRole
    machine_type: str
    zone: str
    image: str
    disk_size_gb: int
    disk_type: str = "pd-standard"
    subnet: str
    public_ip: bool = False
    tags: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)


class Topology(BaseModel):
    """Every resource the lab stack declares."""

    project: str
    region: str
    zone: str
    network: NetworkSpec
    subnet: SubnetSpec
    firewall_rules: list[FirewallRuleSpec]
    instances: list[InstanceSpec]
    enable_nat: bool = False

    def instance(self, role: InstanceRole) -> InstanceSpec | None:
        """Return the instance with the given role, if declared."""
        return next((i for i in self.instances if i.role == role), None)

    def rule(self, name: str) -> FirewallRuleSpec | None:
        """Return the firewall rule with the given name, if declared."""
        return next((r for r in self.firewall_rules if r.name == name), None)


def _instance_labels(config: LabConfig, role: InstanceRole) -> dict[str, str]:
    return {**config.labels, "env": "lab", "role": role, "managed-by": "pulumi"}


def build_topology(config: LabConfig) -> Topology:
    """Build the lab's network, firewall and instance records."""
    network = NetworkSpec(
        name=config.network_name,
        auto_create_subnetworks=False,
        description="Bastion lab VPC",
    )

    subnet = SubnetSpec(
        name=config.subnet_name,
        ip_cidr_range=config.subnet_cidr,
        region=config.region,
        network=network.name,
    )

    firewall_rules = [
        FirewallRuleSpec(
            name=INTERNET_SSH_RULE,
            network=network.name,
            ports=[SSH_PORT],
            source_ranges=[ANYWHERE],
            target_tags=["bastion"],
            description="SSH from the internet to the bastion host only",
        ),
        FirewallRuleSpec(
            name=INTERNAL_SSH_RULE,
            network=network.name,
            ports=[SSH_PORT],
            source_ranges=[subnet.ip_cidr_range],
            target_tags=["prod"],
            description="SSH from inside the lab subnet to the prod server",
        ),
    ]

    ssh_keys = config.ssh_keys_metadata()

    instances = [
        InstanceSpec(
            name="bastion-host",
            role="bastion",
            machine_type=config.bastion_machine_type,
            zone=config.zone,
            image=config.boot_image,
            disk_size_gb=config.bastion_disk_size_gb,
            subnet=subnet.name,
            public_ip=True,
            tags=["bastion"],
            labels=_instance_labels(config, "bastion"),
            metadata={"ssh-keys": ssh_keys},
        ),
        InstanceSpec(
            name="prod-server",
            role="prod",
            machine_type=config.prod_machine_type,
            zone=config.zone,
            image=config.boot_image,
            disk_size_gb=config.prod_disk_size_gb,
            subnet=subnet.name,
            # No external IP: reachable only through the bastion
            public_ip=False,
            tags=["prod"],
            labels=_instance_labels(config, "prod"),
            metadata={"ssh-keys": ssh_keys},
        ),
    ]

    return Topology(
        project=config.project,
        region=config.region,
        zone=config.zone,
        network=network,
        subnet=subnet,
        firewall_rules=firewall_rules,
        instances=instances,
        enable_nat=config.enable_nat,
    )
