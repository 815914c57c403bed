"""Aegis operator: watch Kubernetes workloads, diagnose failures, open healing pull requests."""

__version__ = "0.1.0"
