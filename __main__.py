"""Bastion Lab GCP Infrastructure - Main Entry Point.

This deploys a small lab network:
- Custom-mode VPC with one subnet
- Firewall: SSH from the internet to the bastion, SSH from the subnet to prod
- Bastion host (e2-micro, public IP)
- Prod server (private only, reachable through the bastion)
- Cloud NAT for prod egress (optional, enable_nat=true)

The access policy is checked before any resource is declared.
"""

import pulumi

from bastion_lab.config import load_stack_config
from bastion_lab.policy import enforce
from bastion_lab.stacks import instances, network
from bastion_lab.topology import build_topology

# Configuration
config = load_stack_config()
topology = build_topology(config)

pulumi.log.info(f"Deploying bastion lab to {config.project} ({config.zone})")

# ============================================
# 1. Policy
# ============================================
enforce(topology, config.reserved_ranges)

# ============================================
# 2. Network
# ============================================
pulumi.log.info("Creating network...")
vpc = network.create_vpc(topology)

# ============================================
# 3. Instances
# ============================================
pulumi.log.info("Creating bastion and prod instances...")
hosts = instances.create_instances(topology, vpc)

# ============================================
# Outputs
# ============================================
pulumi.export("project_id", config.project)
pulumi.export("region", config.region)
pulumi.export("zone", config.zone)
pulumi.export("network", vpc["network"].name)
pulumi.export("subnet_cidr", topology.subnet.ip_cidr_range)
pulumi.export("ssh_user", config.ssh_user)

pulumi.export("bastion_external_ip", hosts["bastion_external_ip"])
pulumi.export("bastion_internal_ip", hosts["bastion_internal_ip"])
pulumi.export("prod_internal_ip", hosts["prod_internal_ip"])
# Same ProxyCommand form as bastion-lab verify-ssh; add -i to both hops as needed
pulumi.export(
    "ssh_command",
    pulumi.Output.concat(
        "ssh -o ProxyCommand='ssh -W %h:%p ",
        config.ssh_user,
        "@",
        hosts["bastion_external_ip"],
        "' ",
        config.ssh_user,
        "@",
        hosts["prod_internal_ip"],
    ),
)
