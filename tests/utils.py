"""
Utility functions for oauth-flow-validator tests.

These are helper functions that can be imported by test modules.
"""

import base64
from types import SimpleNamespace
from typing import Dict, Optional

from kubernetes.config import ConfigException

from oauth_validator.clients.kubernetes import KubernetesClient


def load_kubernetes_client(namespace: str) -> Optional[KubernetesClient]:
    """Get a client for the cluster in the current kube config, if there is one."""
    try:
        return KubernetesClient(namespace=namespace)
    except (ConfigException, FileNotFoundError):
        return None


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def make_service_account(name: str = "default", namespace: str = "test-project",
                         uid: str = "sa-uid-1",
                         annotations: Optional[Dict[str, str]] = None) -> SimpleNamespace:
    """Stand-in for a V1ServiceAccount with just the fields the helpers read."""
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name, namespace=namespace, uid=uid, annotations=annotations
        )
    )


def make_token_secret(sa_name: str = "default", uid: str = "sa-uid-1",
                      token: Optional[str] = "sa-token",
                      secret_type: str = "kubernetes.io/service-account-token") -> SimpleNamespace:
    """Stand-in for a V1Secret holding a service account token."""
    data = None
    if token is not None:
        data = {"token": base64.b64encode(token.encode()).decode("ascii")}
    return SimpleNamespace(
        type=secret_type,
        data=data,
        metadata=SimpleNamespace(
            name=f"{sa_name}-token-abcde",
            annotations={
                "kubernetes.io/service-account.name": sa_name,
                "kubernetes.io/service-account.uid": uid,
            },
        ),
    )


def make_event(reason: str, message: str = "") -> SimpleNamespace:
    return SimpleNamespace(reason=reason, message=message)
