"""Terraform-style infrastructure-as-code for Scaleway."""

__version__ = "0.1.0"
