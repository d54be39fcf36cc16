"""VPC Network configuration for the bastion lab.

Creates a custom-mode VPC with a single subnet and the two SSH firewall
rules. Optionally adds Cloud NAT so the private prod server has egress.
"""

from typing import Any

import pulumi_gcp as gcp

from ..topology import FirewallRuleSpec, Topology


def _create_firewall(rule: FirewallRuleSpec, network: gcp.compute.Network) -> gcp.compute.Firewall:
    return gcp.compute.Firewall(
        rule.name,
        name=rule.name,
        network=network.id,
        description=rule.description,
        allows=[
            gcp.compute.FirewallAllowArgs(
                protocol=rule.protocol,
                ports=rule.ports,
            ),
        ],
        source_ranges=rule.source_ranges,
        target_tags=rule.target_tags,
        priority=rule.priority,
    )


def create_vpc(topology: Topology) -> dict[str, Any]:
    """Create the lab VPC, subnet and firewall rules."""
    # VPC Network
    network = gcp.compute.Network(
        topology.network.name,
        name=topology.network.name,
        auto_create_subnetworks=topology.network.auto_create_subnetworks,
        description=topology.network.description,
    )

    subnet = gcp.compute.Subnetwork(
        topology.subnet.name,
        name=topology.subnet.name,
        network=network.id,
        ip_cidr_range=topology.subnet.ip_cidr_range,
        region=topology.subnet.region,
    )

    firewalls = {rule.name: _create_firewall(rule, network) for rule in topology.firewall_rules}

    result: dict[str, Any] = {
        "network": network,
        "subnet": subnet,
        "firewalls": firewalls,
    }

    if topology.enable_nat:
        # Cloud Router (for NAT)
        router = gcp.compute.Router(
            f"{topology.network.name}-router",
            name=f"{topology.network.name}-router",
            network=network.id,
            region=topology.region,
        )

        # Cloud NAT (prod has no external IP but needs package mirrors)
        nat = gcp.compute.RouterNat(
            f"{topology.network.name}-nat",
            name=f"{topology.network.name}-nat",
            router=router.name,
            region=topology.region,
            nat_ip_allocate_option="AUTO_ONLY",
            source_subnetwork_ip_ranges_to_nat="LIST_OF_SUBNETWORKS",
            subnetworks=[
                gcp.compute.RouterNatSubnetworkArgs(
                    name=subnet.id,
                    source_ip_ranges_to_nats=["ALL_IP_RANGES"],
                ),
            ],
            log_config=gcp.compute.RouterNatLogConfigArgs(
                enable=True,
                filter="ERRORS_ONLY",
            ),
        )
        result["router"] = router
        result["nat"] = nat

    return result
