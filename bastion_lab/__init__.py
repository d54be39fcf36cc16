"""Bastion lab: a GCP VPC with a public bastion host and a private prod server."""

__version__ = "0.1.0"
