"""Tests for VPC Network configuration."""

from typing import Any
from unittest.mock import MagicMock, patch

from bastion_lab.stacks import network
from bastion_lab.topology import INTERNAL_SSH_RULE, INTERNET_SSH_RULE, Topology


class TestNetworkConfiguration:
    """Test VPC Network configuration."""

    def test_create_vpc_function_exists(self) -> None:
        """Test that create_vpc function exists and is callable."""
        assert hasattr(network, "create_vpc")
        assert callable(network.create_vpc)

    def test_create_vpc_returns_resources(self, topology: Topology) -> None:
        """Test that create_vpc creates the network, subnet and both rules."""
        result = network.create_vpc(topology)

        assert set(result) == {"network", "subnet", "firewalls"}
        assert set(result["firewalls"]) == {INTERNET_SSH_RULE, INTERNAL_SSH_RULE}

    def test_network_is_custom_mode(self, topology: Topology) -> None:
        """Test that the VPC does not auto-create subnetworks."""
        result = network.create_vpc(topology)

        assert result["network"].name == "lab-vpc"
        assert result["network"].kwargs["auto_create_subnetworks"] is False

    def test_subnet_attached_to_network(self, topology: Topology) -> None:
        """Test subnet CIDR, region and parent network."""
        result = network.create_vpc(topology)
        subnet_kwargs = result["subnet"].kwargs

        assert subnet_kwargs["ip_cidr_range"] == "10.10.0.0/24"
        assert subnet_kwargs["region"] == "us-central1"
        assert subnet_kwargs["network"] == result["network"].id

    @patch("pulumi_gcp.compute.Firewall")
    def test_firewall_rules_configuration(self, mock_firewall: Any, topology: Topology) -> None:
        """Test that each firewall allows tcp/22 to exactly one tag."""
        network.create_vpc(topology)

        assert mock_firewall.call_count == 2
        calls = {c[0][0]: c[1] for c in mock_firewall.call_args_list}

        internet = calls[INTERNET_SSH_RULE]
        assert internet["source_ranges"] == ["0.0.0.0/0"]
        assert internet["target_tags"] == ["bastion"]
        assert internet["allows"][0].protocol == "tcp"
        assert internet["allows"][0].ports == ["22"]

        internal = calls[INTERNAL_SSH_RULE]
        assert internal["source_ranges"] == ["10.10.0.0/24"]
        assert internal["target_tags"] == ["prod"]

    @patch("pulumi_gcp.compute.Router")
    @patch("pulumi_gcp.compute.RouterNat")
    def test_no_nat_by_default(
        self, mock_nat: Any, mock_router: Any, topology: Topology
    ) -> None:
        """Test that Cloud NAT is only created when enabled."""
        result = network.create_vpc(topology)

        mock_router.assert_not_called()
        mock_nat.assert_not_called()
        assert "nat" not in result

    @patch("pulumi_gcp.compute.Router")
    @patch("pulumi_gcp.compute.RouterNat")
    def test_nat_configuration(self, mock_nat: Any, mock_router: Any, topology: Topology) -> None:
        """Test that NAT is scoped to the lab subnet."""
        mock_router_instance = MagicMock()
        mock_router_instance.name = "lab-vpc-router"
        mock_router.return_value = mock_router_instance

        result = network.create_vpc(topology.model_copy(update={"enable_nat": True}))

        assert result["router"] is mock_router_instance
        nat_call_args = mock_nat.call_args
        assert nat_call_args[1]["router"] == "lab-vpc-router"
        assert nat_call_args[1]["nat_ip_allocate_option"] == "AUTO_ONLY"
        assert nat_call_args[1]["source_subnetwork_ip_ranges_to_nat"] == "LIST_OF_SUBNETWORKS"
        assert nat_call_args[1]["subnetworks"][0].name == result["subnet"].id
