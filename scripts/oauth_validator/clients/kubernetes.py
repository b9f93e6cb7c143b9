"""
Kubernetes Client
=================

Native Kubernetes API helpers for the service-account OAuth client fixtures:
project and service-account setup, token secret discovery, event polling and
OAuth client authorization cleanup.
"""

from ..logging import log_debug, log_info

import base64
import json
import time
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

# Service account annotations understood by the OAuth server
OAUTH_REDIRECT_URI_PREFIX = "serviceaccounts.openshift.io/oauth-redirecturi."
OAUTH_REDIRECT_REFERENCE_PREFIX = "serviceaccounts.openshift.io/oauth-redirectreference."
OAUTH_WANT_CHALLENGES_ANNOTATION = "serviceaccounts.openshift.io/oauth-want-challenges"

SERVICE_ACCOUNT_TOKEN_TYPE = "kubernetes.io/service-account-token"
SERVICE_ACCOUNT_NAME_ANNOTATION = "kubernetes.io/service-account.name"
SERVICE_ACCOUNT_UID_ANNOTATION = "kubernetes.io/service-account.uid"
SERVICE_ACCOUNT_TOKEN_KEY = "token"

OAUTH_GROUP = "oauth.openshift.io"
OAUTH_VERSION = "v1"
PROJECT_GROUP = "project.openshift.io"
PROJECT_VERSION = "v1"

NO_REDIRECT_URIS_REASON = "NoSAOAuthRedirectURIs"

# Conflict retry (same shape as client-go's DefaultRetry)
CONFLICT_RETRY_STEPS = 5
CONFLICT_RETRY_DELAY = 0.01


def no_redirect_uris_message(namespace: str, sa_name: str) -> str:
    """Event message the OAuth server emits for an SA without usable redirect URIs."""
    return (
        f"system:serviceaccount:{namespace}:{sa_name} has no redirectURIs; "
        f"set {OAUTH_REDIRECT_URI_PREFIX}<some-value>=<redirect> or create a dynamic URI "
        f"using {OAUTH_REDIRECT_REFERENCE_PREFIX}<some-value>=<reference>"
    )


def build_redirect_reference(kind: str, name: str, group: str) -> str:
    """Serialized OAuthRedirectReference, the value of a redirectreference annotation."""
    reference = {
        "kind": "OAuthRedirectReference",
        "apiVersion": f"{OAUTH_GROUP}/{OAUTH_VERSION}",
        "metadata": {"creationTimestamp": None},
        "reference": {"group": group, "kind": kind, "name": name},
    }
    return json.dumps(reference, separators=(",", ":"))


def collect_events_with_reason(events: List[Any], reason: str) -> List[Any]:
    return [event for event in events if event.reason == reason]


def is_service_account_token(secret: Any, service_account: Any) -> bool:
    """Check that ``secret`` is a token secret issued for ``service_account``."""
    if secret.type != SERVICE_ACCOUNT_TOKEN_TYPE:
        return False
    annotations = secret.metadata.annotations or {}
    if annotations.get(SERVICE_ACCOUNT_NAME_ANNOTATION) != service_account.metadata.name:
        return False
    uid = annotations.get(SERVICE_ACCOUNT_UID_ANNOTATION)
    if uid and uid != service_account.metadata.uid:
        return False
    return True


def poll(condition: Callable[[], bool], interval: float, timeout: float,
         immediate: bool = False) -> bool:
    """
    Poll ``condition`` every ``interval`` seconds until it holds.

    Args:
        condition: Callable returning True when done; exceptions propagate
        interval: Seconds between checks
        timeout: Give up after this many seconds
        immediate: Check once before the first sleep

    Returns:
        True if the condition held, False on timeout
    """
    deadline = time.monotonic() + timeout
    if immediate and condition():
        return True
    while time.monotonic() < deadline:
        time.sleep(interval)
        if condition():
            return True
    return False


class KubernetesClient:
    """Native Kubernetes API client scoped to one project"""

    def __init__(self, namespace: str = "test-project",
                 core_v1: Optional[client.CoreV1Api] = None,
                 custom_objects: Optional[client.CustomObjectsApi] = None,
                 rbac_v1: Optional[client.RbacAuthorizationV1Api] = None,
                 api_host: Optional[str] = None):
        """Initialize Kubernetes client

        Args:
            namespace: Project the fixtures live in
            core_v1: Pre-built CoreV1Api (kube config is loaded when omitted)
            custom_objects: Pre-built CustomObjectsApi
            rbac_v1: Pre-built RbacAuthorizationV1Api
            api_host: API server URL (read from kube config when omitted)
        """
        if core_v1 is None or custom_objects is None or rbac_v1 is None:
            config.load_kube_config()
        self.v1 = core_v1 or client.CoreV1Api()
        self.custom_objects = custom_objects or client.CustomObjectsApi()
        self.rbac_v1 = rbac_v1 or client.RbacAuthorizationV1Api()
        self.namespace = namespace
        self._api_host = api_host

    @property
    def api_host(self) -> str:
        if self._api_host is None:
            self._api_host = client.Configuration.get_default_copy().host
        return self._api_host.rstrip("/")

    # ------------------------------------------------------------------
    # Project and service account setup
    # ------------------------------------------------------------------

    def ensure_project(self, admin_user: Optional[str] = None):
        """Create the project through a ProjectRequest

        Args:
            admin_user: User granted the admin role in the project
        """
        body = {
            "apiVersion": f"{PROJECT_GROUP}/{PROJECT_VERSION}",
            "kind": "ProjectRequest",
            "metadata": {"name": self.namespace},
        }
        try:
            self.custom_objects.create_cluster_custom_object(
                PROJECT_GROUP, PROJECT_VERSION, "projectrequests", body
            )
            log_info(f"  ✓ Created project {self.namespace}")
        except ApiException as e:
            if e.status != 409:
                raise
            log_debug(f"  Project {self.namespace} already exists")

        if admin_user:
            self.grant_project_admin(admin_user)

    def grant_project_admin(self, user: str):
        binding = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": {"name": f"admin-{user}"},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": "admin",
            },
            "subjects": [
                {"apiGroup": "rbac.authorization.k8s.io", "kind": "User", "name": user}
            ],
        }
        try:
            self.rbac_v1.create_namespaced_role_binding(self.namespace, binding)
        except ApiException as e:
            if e.status != 409:
                raise

    def wait_for_service_account(self, name: str, interval: float = 0.5,
                                 timeout: float = 60) -> Any:
        """Wait until a service account exists

        Returns:
            The service account object

        Raises:
            TimeoutError: If it never shows up
        """
        found = {}

        def exists() -> bool:
            try:
                found["sa"] = self.v1.read_namespaced_service_account(name, self.namespace)
            except ApiException as e:
                if e.status == 404:
                    return False
                raise
            return True

        if not poll(exists, interval, timeout, immediate=True):
            raise TimeoutError(f"Service account {self.namespace}/{name} not found after {timeout}s")
        return found["sa"]

    def annotate_service_account(self, name: str, annotation_key: str,
                                 annotation_value: str) -> Any:
        """Replace the service account annotations with a single OAuth annotation

        Challenges are always enabled so the flow starts with a 401.

        Args:
            name: Service account name
            annotation_key: Annotation to set (redirect URI or reference key)
            annotation_value: Annotation value

        Returns:
            The updated service account
        """
        for attempt in range(1, CONFLICT_RETRY_STEPS + 1):
            service_account = self.v1.read_namespaced_service_account(name, self.namespace)
            # Each run needs a fresh set of annotations
            service_account.metadata.annotations = {
                annotation_key: annotation_value,
                OAUTH_WANT_CHALLENGES_ANNOTATION: "true",
            }
            try:
                return self.v1.replace_namespaced_service_account(
                    name, self.namespace, service_account
                )
            except ApiException as e:
                if e.status != 409 or attempt == CONFLICT_RETRY_STEPS:
                    raise
                log_debug(f"  Conflict updating {name}, retrying ({attempt}/{CONFLICT_RETRY_STEPS})")
                time.sleep(CONFLICT_RETRY_DELAY)

    def create_token_secret(self, service_account: Any) -> Any:
        """Request a token secret for a service account (clusters that no longer auto-create them)"""
        sa_name = service_account.metadata.name
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": SERVICE_ACCOUNT_TOKEN_TYPE,
            "metadata": {
                "generateName": f"{sa_name}-token-",
                "annotations": {SERVICE_ACCOUNT_NAME_ANNOTATION: sa_name},
            },
        }
        return self.v1.create_namespaced_secret(self.namespace, body)

    def find_token_secret(self, service_account: Any) -> Optional[Any]:
        for secret in self.v1.list_namespaced_secret(self.namespace).items:
            if not is_service_account_token(secret, service_account):
                continue
            if (secret.data or {}).get(SERVICE_ACCOUNT_TOKEN_KEY):
                return secret
        return None

    def wait_for_token_secret(self, service_account: Any, interval: float = 0.03,
                              timeout: float = 10, create: bool = False) -> Any:
        """Poll for the populated token secret of a service account

        Args:
            service_account: Service account object
            interval: Seconds between polls
            timeout: Seconds before giving up
            create: Request a token secret first when none exists

        Returns:
            The secret object

        Raises:
            TimeoutError: If no populated token secret appears
        """
        found = {}

        def populated() -> bool:
            found["secret"] = self.find_token_secret(service_account)
            return found["secret"] is not None

        if create and not populated():
            log_debug(f"  No token secret for {service_account.metadata.name}, requesting one")
            self.create_token_secret(service_account)

        if not poll(populated, interval, timeout, immediate=True):
            raise TimeoutError(
                f"No token secret for service account {service_account.metadata.name} "
                f"after {timeout}s"
            )
        return found["secret"]

    @staticmethod
    def get_token(secret: Any) -> str:
        return base64.b64decode(secret.data[SERVICE_ACCOUNT_TOKEN_KEY]).decode("utf-8")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(self) -> List[Any]:
        return self.v1.list_namespaced_event(self.namespace).items

    def wait_for_events(self, min_count: int, interval: float = 1,
                        timeout: float = 5) -> List[Any]:
        """Poll until the project holds at least ``min_count`` events

        The first check happens after one interval so late events get a chance.

        Returns:
            The events seen by the last poll

        Raises:
            TimeoutError: If fewer events exist when the timeout expires
        """
        found: Dict[str, List[Any]] = {"events": []}

        def enough() -> bool:
            found["events"] = self.list_events()
            return len(found["events"]) >= min_count

        if not poll(enough, interval, timeout):
            raise TimeoutError(
                f"Expected at least {min_count} events in {self.namespace}, "
                f"found {len(found['events'])}"
            )
        return found["events"]

    def delete_events(self):
        self.v1.delete_collection_namespaced_event(self.namespace)

    # ------------------------------------------------------------------
    # OAuth objects
    # ------------------------------------------------------------------

    def delete_oauth_client_authorization(self, user: str, client_id: str) -> bool:
        """Delete the grant ``<user>:<client_id>`` so the next run is asked again

        Returns:
            True if an authorization was deleted
        """
        name = f"{user}:{client_id}"
        try:
            self.custom_objects.delete_cluster_custom_object(
                OAUTH_GROUP, OAUTH_VERSION, "oauthclientauthorizations", name
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True
