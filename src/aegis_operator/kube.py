"""Kubernetes client bootstrap shared by the controller and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kubernetes import client, config


def load_kube_config(kubeconfig_path: str | None = None, context: str | None = None) -> client.Configuration:
    """Load in-cluster or kubeconfig-based configuration."""
    try:
        config.load_incluster_config()
        return client.Configuration.get_default_copy()
    except config.ConfigException:
        pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)
    return client.Configuration.get_default_copy()


@dataclass
class KubeClients:
    """The typed API groups the operator talks to."""

    core: client.CoreV1Api
    apps: client.AppsV1Api
    custom: client.CustomObjectsApi

    @classmethod
    def connect(cls, kubeconfig: str | None = None, context: str | None = None) -> KubeClients:
        api_client = client.ApiClient(load_kube_config(kubeconfig, context))
        return cls(
            core=client.CoreV1Api(api_client),
            apps=client.AppsV1Api(api_client),
            custom=client.CustomObjectsApi(api_client),
        )
