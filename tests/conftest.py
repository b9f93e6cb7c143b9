"""
Pytest fixtures and configuration for oauth-flow-validator tests.

These fixtures provide the shared pieces every suite needs: the target
project configuration, flow settings, and the local redirect URI endpoint
with the code/error channels it feeds.
"""

import os
from dataclasses import dataclass

import pytest
import urllib3

from oauth_validator.clients.callback import AuthorizationSignals, CallbackServer
from oauth_validator.settings import FlowSettings

# Disable SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


@dataclass
class ClusterConfig:
    """Configuration for the target cluster."""

    namespace: str
    service_account: str
    admin_user: str


# --- Fixtures ---


@pytest.fixture(scope="session")
def cluster_config() -> ClusterConfig:
    """Get cluster configuration from environment variables."""
    return ClusterConfig(
        namespace=os.environ.get("OAUTH_TEST_NAMESPACE", "test-project"),
        service_account=os.environ.get("OAUTH_TEST_SERVICE_ACCOUNT", "default"),
        admin_user=os.environ.get("OAUTH_CHALLENGE_USER", "harold"),
    )


@pytest.fixture(scope="session")
def flow_settings() -> FlowSettings:
    """Flow settings from OAUTH_* environment variables."""
    return FlowSettings.from_env()


@pytest.fixture(scope="session")
def signals() -> AuthorizationSignals:
    """Code and error channels shared by the callback server and the driver."""
    return AuthorizationSignals(publish_timeout=1.0)


@pytest.fixture(scope="session")
def callback_server(signals: AuthorizationSignals):
    """Local redirect URI endpoint publishing to ``signals``."""
    with CallbackServer(signals) as server:
        yield server
