"""Bastion lab Pulumi stacks."""

from . import instances as instances
from . import network as network
