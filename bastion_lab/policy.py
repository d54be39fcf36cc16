"""Access policy checks for the lab topology.

SSH is reachable from the internet only on instances tagged ``bastion``,
and from inside the lab subnet only on instances tagged ``prod``. These
checks run before any resource is declared and from ``bastion-lab check``.
"""

import ipaddress
from collections.abc import Callable
from dataclasses import dataclass

from .exceptions import PolicyViolationError
from .topology import (
    ANYWHERE,
    INTERNAL_SSH_RULE,
    INTERNET_SSH_RULE,
    SSH_PORT,
    FirewallRuleSpec,
    Topology,
)

MIN_SUBNET_PREFIX = 8
MAX_SUBNET_PREFIX = 29

RFC1918_RANGES = [
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
]
ROLE_TAGS = {"bastion", "prod"}


@dataclass(frozen=True)
class PolicyViolation:
    check: str
    resource: str
    message: str

    def __str__(self) -> str:
        return f"[{self.check}] {self.resource}: {self.message}"


def _check_subnet_private(topology: Topology) -> list[PolicyViolation]:
    subnet = topology.subnet
    net = ipaddress.ip_network(subnet.ip_cidr_range)
    violations = []
    is_rfc1918 = net.version == 4 and any(net.subnet_of(r) for r in RFC1918_RANGES)
    if not is_rfc1918:
        violations.append(
            PolicyViolation("subnet-cidr-private", subnet.name, f"{net} is not an RFC 1918 range")
        )
    if not MIN_SUBNET_PREFIX <= net.prefixlen <= MAX_SUBNET_PREFIX:
        violations.append(
            PolicyViolation(
                "subnet-cidr-private",
                subnet.name,
                f"prefix /{net.prefixlen} outside /{MIN_SUBNET_PREFIX}../{MAX_SUBNET_PREFIX}",
            )
        )
    return violations


def _check_subnet_overlap(
    topology: Topology, reserved_ranges: list[str]
) -> list[PolicyViolation]:
    subnet = topology.subnet
    net = ipaddress.ip_network(subnet.ip_cidr_range)
    return [
        PolicyViolation("subnet-cidr-overlap", subnet.name, f"{net} overlaps reserved {reserved}")
        for reserved in reserved_ranges
        if net.overlaps(ipaddress.ip_network(reserved))
    ]


def _check_public_ip(topology: Topology) -> list[PolicyViolation]:
    violations = []
    bastion = topology.instance("bastion")
    prod = topology.instance("prod")

    if bastion is None:
        violations.append(PolicyViolation("bastion-public-ip", "bastion", "not declared"))
    elif not bastion.public_ip:
        violations.append(
            PolicyViolation("bastion-public-ip", bastion.name, "has no public access config")
        )

    if prod is None:
        violations.append(PolicyViolation("prod-private-only", "prod", "not declared"))
    elif prod.public_ip:
        violations.append(
            PolicyViolation("prod-private-only", prod.name, "must not have a public access config")
        )
    return violations


def _check_rule(
    topology: Topology,
    check: str,
    name: str,
    target_tag: str,
    source_ranges: list[str],
) -> tuple[FirewallRuleSpec | None, list[PolicyViolation]]:
    rule = topology.rule(name)
    if rule is None:
        return None, [PolicyViolation(check, name, "rule not declared")]

    violations = []
    if set(rule.target_tags) != {target_tag}:
        violations.append(
            PolicyViolation(
                check, name, f"target tags {sorted(rule.target_tags)} != ['{target_tag}']"
            )
        )
    if sorted(rule.source_ranges) != sorted(source_ranges):
        violations.append(
            PolicyViolation(check, name, f"source ranges {rule.source_ranges} != {source_ranges}")
        )
    return rule, violations


def _check_ssh_rules(topology: Topology) -> list[PolicyViolation]:
    violations = []
    rules = []

    for check, name, tag, sources in (
        ("internet-ssh-targets", INTERNET_SSH_RULE, "bastion", [ANYWHERE]),
        ("internal-ssh-targets", INTERNAL_SSH_RULE, "prod", [topology.subnet.ip_cidr_range]),
    ):
        rule, rule_violations = _check_rule(topology, check, name, tag, sources)
        violations.extend(rule_violations)
        if rule is not None:
            rules.append(rule)

    for rule in rules:
        if rule.protocol != "tcp" or rule.ports != [SSH_PORT]:
            violations.append(
                PolicyViolation(
                    "ssh-only",
                    rule.name,
                    f"allows {rule.protocol}/{','.join(rule.ports) or 'all'}, expected tcp/22",
                )
            )

    known = (INTERNET_SSH_RULE, INTERNAL_SSH_RULE)
    for rule in topology.firewall_rules:
        if rule.name not in known:
            violations.append(PolicyViolation("ssh-only", rule.name, "unexpected firewall rule"))
    return violations


def _check_instances(topology: Topology) -> list[PolicyViolation]:
    violations = []
    for instance in topology.instances:
        if instance.role not in instance.tags:
            violations.append(
                PolicyViolation(
                    "instance-tags", instance.name, f"missing network tag '{instance.role}'"
                )
            )
        for tag in sorted((ROLE_TAGS - {instance.role}) & set(instance.tags)):
            violations.append(
                PolicyViolation(
                    "instance-tags", instance.name, f"carries network tag '{tag}' of another role"
                )
            )
        if not instance.metadata.get("ssh-keys"):
            violations.append(
                PolicyViolation("ssh-metadata", instance.name, "missing ssh-keys metadata")
            )
    return violations


def check_topology(
    topology: Topology, reserved_ranges: list[str] | None = None
) -> list[PolicyViolation]:
    """Return every policy the topology violates (empty when compliant)."""
    checks: list[Callable[[Topology], list[PolicyViolation]]] = [
        _check_subnet_private,
        _check_public_ip,
        _check_ssh_rules,
        _check_instances,
    ]

    violations: list[PolicyViolation] = []
    for check in checks:
        violations.extend(check(topology))
    violations.extend(_check_subnet_overlap(topology, reserved_ranges or []))
    return violations


def enforce(topology: Topology, reserved_ranges: list[str] | None = None) -> None:
    """Raise :class:`PolicyViolationError` if the topology is not compliant."""
    violations = check_topology(topology, reserved_ranges)
    if violations:
        raise PolicyViolationError(violations)
