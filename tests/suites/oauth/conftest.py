"""
Live OAuth suite fixtures.

Fixtures for running the service account OAuth client checks against the
cluster in the current kube config.
"""

import pytest

from oauth_validator.clients.kubernetes import KubernetesClient
from utils import load_kubernetes_client


@pytest.fixture(scope="module")
def k8s(cluster_config) -> KubernetesClient:
    """Client scoped to the test project, with the project and its service account ready."""
    k8s = load_kubernetes_client(cluster_config.namespace)
    if k8s is None:
        pytest.skip("No kube config available")

    k8s.ensure_project(admin_user=cluster_config.admin_user)
    k8s.wait_for_service_account(cluster_config.service_account)
    return k8s
