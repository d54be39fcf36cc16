"""Bastion lab test configuration.

``pulumi`` and ``pulumi_gcp`` are replaced with lightweight mocks so the
stacks can be exercised without a Pulumi engine or GCP credentials.
"""

import os
import sys
from types import SimpleNamespace
from typing import Any

import pytest

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Set test environment variables
os.environ.setdefault("PULUMI_CONFIG_PASSPHRASE", "test-passphrase")
os.environ.setdefault("PULUMI_SKIP_UPDATE_CHECK", "true")

SSH_PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeKeyMaterialForTests lab@example"


class MockConfigMissingError(Exception):
    pass


class MockOutput:
    def __init__(self, value: Any = None) -> None:
        self.value = value

    def apply(self, func: Any) -> "MockOutput":
        return MockOutput(func(self.value))

    @staticmethod
    def all(*args: Any, **kwargs: Any) -> "MockOutput":
        return MockOutput(list(args))

    @staticmethod
    def concat(*args: Any) -> "MockOutput":
        return MockOutput("".join(str(a) for a in args))


class MockConfig:
    def __init__(self, name: str | None, values: dict[str, Any]) -> None:
        self.name = name or "bastion-lab"
        self.values = values

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(f"{self.name}:{key}")
        return default if value is None else value

    def get_object(self, key: str, default: Any = None) -> Any:
        return self.get(key, default)

    def require(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise MockConfigMissingError(f"{self.name}:{key}")
        return value


class MockLog:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.messages.append(msg)

    warn = info
    error = info


class MockPulumi:
    Output = MockOutput

    def __init__(self) -> None:
        self.config_values: dict[str, Any] = {}
        self.exports: dict[str, Any] = {}
        self.log = MockLog()

    def Config(self, name: str | None = None) -> MockConfig:
        return MockConfig(name, self.config_values)

    def export(self, name: str, value: Any) -> None:
        self.exports[name] = value

    def get_stack(self) -> str:
        return "test"


class _MockResource:
    def __init__(self, resource_name: str, *args: Any, **kwargs: Any) -> None:
        self.resource_name = resource_name
        self.kwargs = kwargs
        self.name = kwargs.get("name", resource_name)
        self.id = f"mock-{resource_name}-id"


class _MockArgs:
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        for k, v in kwargs.items():
            setattr(self, k, v)


# Mock GCP modules with proper attribute access
class MockGCP:
    class compute:
        class Network(_MockResource):
            pass

        class Subnetwork(_MockResource):
            pass

        class Firewall(_MockResource):
            pass

        class FirewallAllowArgs(_MockArgs):
            pass

        class Router(_MockResource):
            pass

        class RouterNat(_MockResource):
            pass

        class RouterNatSubnetworkArgs(_MockArgs):
            pass

        class RouterNatLogConfigArgs(_MockArgs):
            pass

        class Instance(_MockResource):
            def __init__(self, resource_name: str, *args: Any, **kwargs: Any) -> None:
                super().__init__(resource_name, *args, **kwargs)
                self.network_interfaces = [
                    SimpleNamespace(
                        network_ip=f"10.10.0.{len(resource_name)}",
                        access_configs=[SimpleNamespace(nat_ip="203.0.113.10")],
                    )
                ]

        class InstanceBootDiskArgs(_MockArgs):
            pass

        class InstanceBootDiskInitializeParamsArgs(_MockArgs):
            pass

        class InstanceNetworkInterfaceArgs(_MockArgs):
            pass

        class InstanceNetworkInterfaceAccessConfigArgs(_MockArgs):
            pass


# Monkey patch to avoid import errors
mock_pulumi = MockPulumi()
sys.modules["pulumi"] = mock_pulumi  # type: ignore[assignment]
sys.modules["pulumi_gcp"] = MockGCP()  # type: ignore[assignment]


@pytest.fixture(scope="session")
def project_id() -> str:
    """Test GCP project ID."""
    return "bastion-lab-test"


@pytest.fixture(scope="session")
def ssh_public_key() -> str:
    return SSH_PUBLIC_KEY


@pytest.fixture
def lab_config(project_id: str) -> Any:
    """Default lab configuration."""
    from bastion_lab.config import LabConfig

    return LabConfig(project=project_id, ssh_public_key=SSH_PUBLIC_KEY)


@pytest.fixture
def topology(lab_config: Any) -> Any:
    """Topology built from the default configuration."""
    from bastion_lab.topology import build_topology

    return build_topology(lab_config)


@pytest.fixture
def stack_config(project_id: str) -> Any:
    """Pulumi stack config visible to ``pulumi.Config``."""
    values = {
        "gcp:project": project_id,
        "gcp:region": "europe-west1",
        "bastion-lab:ssh_public_key": SSH_PUBLIC_KEY,
    }
    mock_pulumi.config_values = values
    mock_pulumi.exports = {}
    yield values
    mock_pulumi.config_values = {}
    mock_pulumi.exports = {}


@pytest.fixture
def pulumi_mock() -> MockPulumi:
    return mock_pulumi
