"""Gitterm compute provisioning engine."""

__version__ = "0.1.0"
