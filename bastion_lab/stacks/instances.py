"""Compute instances for the bastion lab.

- bastion-host: e2-micro with an ephemeral public IP, the only SSH entry point
- prod-server: private-only, reachable over SSH from inside the lab subnet
"""

from typing import Any

import pulumi_gcp as gcp

from ..topology import InstanceSpec, Topology


def create_instance(spec: InstanceSpec, vpc: dict[str, Any]) -> gcp.compute.Instance:
    """Create a single compute instance from its spec."""
    # Ephemeral external IP for public instances only
    access_configs = None
    if spec.public_ip:
        access_configs = [gcp.compute.InstanceNetworkInterfaceAccessConfigArgs()]

    return gcp.compute.Instance(
        spec.name,
        name=spec.name,
        machine_type=spec.machine_type,
        zone=spec.zone,
        boot_disk=gcp.compute.InstanceBootDiskArgs(
            initialize_params=gcp.compute.InstanceBootDiskInitializeParamsArgs(
                image=spec.image,
                size=spec.disk_size_gb,
                type=spec.disk_type,
            ),
        ),
        network_interfaces=[
            gcp.compute.InstanceNetworkInterfaceArgs(
                network=vpc["network"].id,
                subnetwork=vpc["subnet"].id,
                access_configs=access_configs,
            ),
        ],
        metadata=spec.metadata,
        # Tag for firewall rules
        tags=spec.tags,
        labels=spec.labels,
        allow_stopping_for_update=True,
    )


def create_instances(topology: Topology, vpc: dict[str, Any]) -> dict[str, Any]:
    """Create the bastion host and the prod server."""
    bastion_spec = topology.instance("bastion")
    prod_spec = topology.instance("prod")
    if bastion_spec is None or prod_spec is None:
        raise ValueError("topology must declare both a bastion and a prod instance")

    bastion = create_instance(bastion_spec, vpc)
    prod = create_instance(prod_spec, vpc)

    return {
        "bastion": bastion,
        "prod": prod,
        "bastion_external_ip": bastion.network_interfaces[0].access_configs[0].nat_ip,
        "bastion_internal_ip": bastion.network_interfaces[0].network_ip,
        "prod_internal_ip": prod.network_interfaces[0].network_ip,
    }
