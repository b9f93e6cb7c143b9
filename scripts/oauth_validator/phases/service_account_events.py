"""
Service account OAuth client events phase.

Configures the project's service account as an OAuth client through its
annotations, walks the authorization flow for it, and verifies the warning
events the OAuth server emits when the redirect configuration is unusable.
"""

from ..clients.callback import AuthorizationSignals
from ..clients.kubernetes import (
    NO_REDIRECT_URIS_REASON,
    OAUTH_REDIRECT_REFERENCE_PREFIX,
    OAUTH_REDIRECT_URI_PREFIX,
    KubernetesClient,
    build_redirect_reference,
    collect_events_with_reason,
    no_redirect_uris_message,
)
from ..exceptions import OAuthFlowError
from ..flow import (
    APPROVAL_FLOW_OPERATIONS,
    ClientConfig,
    OAuthFlowDriver,
    join_scopes,
    service_account_username,
)
from ..logging import log_debug, log_error, log_info, log_success, log_warning
from ..settings import FlowSettings

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml
from kubernetes.client.rest import ApiException


@dataclass(frozen=True)
class Scenario:
    """One service account annotation and the outcome it should produce."""

    name: str
    annotation_prefix: str
    annotation: str
    expected_event_reason: str = ""
    expected_event_msg: str = ""
    num_events: int = 0
    expect_bad_request: bool = False


def default_scenarios(namespace: str, sa_name: str) -> List[Scenario]:
    """Redirect configurations covered by the events check."""
    base = no_redirect_uris_message(namespace, sa_name)
    uri_prefix = OAUTH_REDIRECT_URI_PREFIX + "one"
    reference_prefix = OAUTH_REDIRECT_REFERENCE_PREFIX + "1"

    def bad(name, prefix, annotation, message):
        return Scenario(
            name=name,
            annotation_prefix=prefix,
            annotation=annotation,
            expected_event_reason=NO_REDIRECT_URIS_REASON,
            expected_event_msg=message,
            num_events=1,
            expect_bad_request=True,
        )

    return [
        Scenario(name="test-good-url", annotation_prefix=uri_prefix, annotation="/oauthcallback"),
        bad("test-bad-url", uri_prefix, "foo:foo", base),
        bad("test-bad-url-parse", uri_prefix, "::",
            f"[parse ::: missing protocol scheme, {base}]"),
        bad("test-bad-redirect-annotation-kind", reference_prefix,
            '{"kind":"foo","apiVersion":"oauth.openshift.io/v1","metadata":{"creationTimestamp":null},'
            '"reference":{"group":"foo","kind":"Route","name":"route1"}}',
            '[no kind "foo" is registered for version "oauth.openshift.io/v1" in scheme '
            '"github.com/openshift/library-go/pkg/oauth/oauthserviceaccountclient/oauthclientregistry.go:54", '
            f"{base}]"),
        bad("test-bad-redirect-type-parse", reference_prefix, '{asdf":"adsf"}',
            "[couldn't get version/kind; json parse error: invalid character 'a' "
            f"looking for beginning of object key string, {base}]"),
        bad("test-bad-redirect-route-not-found", reference_prefix,
            build_redirect_reference("Route", "route1", "route.openshift.io"),
            f'[routes.route.openshift.io "route1" not found, {base}]'),
        bad("test-bad-redirect-route-wrong-group", reference_prefix,
            build_redirect_reference("Route", "route1", "foo"), base),
        bad("test-bad-redirect-reference-kind", reference_prefix,
            build_redirect_reference("foo", "route1", "route.openshift.io"), base),
    ]


def _expand(text: str, replacements: Dict[str, str]) -> str:
    # Plain replacement: annotation values are JSON and full of braces
    for token, value in replacements.items():
        text = text.replace("{" + token + "}", value)
    return text


def load_scenarios(path: str, namespace: str, sa_name: str) -> List[Scenario]:
    """
    Load scenarios from a YAML list.

    String fields may use the placeholders {namespace}, {sa},
    {no_redirect_uris}, {uri_prefix} and {reference_prefix}. A
    ``redirect_reference`` mapping (kind, name, group) may replace
    ``annotation``.

    Args:
        path: YAML file path
        namespace: Project name substituted for {namespace}
        sa_name: Service account substituted for {sa}

    Returns:
        List of scenarios in file order
    """
    replacements = {
        "namespace": namespace,
        "sa": sa_name,
        "no_redirect_uris": no_redirect_uris_message(namespace, sa_name),
        "uri_prefix": OAUTH_REDIRECT_URI_PREFIX,
        "reference_prefix": OAUTH_REDIRECT_REFERENCE_PREFIX,
    }
    with open(path) as f:
        entries = yaml.safe_load(f) or []
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a list of scenarios")

    scenarios = []
    for entry in entries:
        entry = dict(entry)
        reference = entry.pop("redirect_reference", None)
        if reference is not None:
            entry["annotation"] = build_redirect_reference(
                reference["kind"], reference["name"], reference.get("group", "")
            )
        for key in ("annotation_prefix", "annotation", "expected_event_msg"):
            if isinstance(entry.get(key), str):
                entry[key] = _expand(entry[key], replacements)
        scenarios.append(Scenario(**entry))
    return scenarios


class ServiceAccountEventsPhase:
    """Run the OAuth flow for each scenario and check the resulting events."""

    def __init__(self, k8s: KubernetesClient, signals: AuthorizationSignals,
                 callback_url: str, settings: Optional[FlowSettings] = None,
                 sa_name: str = "default", admin_user: Optional[str] = None,
                 create_token_secret: bool = False):
        """
        Initialize the phase.

        Args:
            k8s: Client scoped to the test project
            signals: Channels fed by the callback server
            callback_url: Redirect URI for scenarios that expect a code
            settings: Flow settings
            sa_name: Service account configured as OAuth client
            admin_user: User whose grant is removed after each flow
                        (defaults to the challenge user)
            create_token_secret: Request a token secret when none exists
        """
        self.k8s = k8s
        self.signals = signals
        self.callback_url = callback_url
        self.settings = settings or FlowSettings()
        self.sa_name = sa_name
        self.admin_user = admin_user or self.settings.challenge_username
        self.create_token_secret = create_token_secret

    def client_config(self, service_account: Any, secret: Any, redirect_url: str) -> ClientConfig:
        host = self.k8s.api_host
        return ClientConfig(
            client_id=service_account_username(
                service_account.metadata.namespace, service_account.metadata.name
            ),
            client_secret=self.k8s.get_token(secret),
            authorize_url=host + "/oauth/authorize",
            token_url=host + "/oauth/token",
            redirect_url=redirect_url,
            scope=join_scopes(["user:info", "role:edit:" + self.k8s.namespace]),
            send_client_secret_in_params=True,
        )

    def run(self, scenarios: Optional[List[Scenario]] = None) -> Dict[str, Any]:
        """
        Run every scenario.

        Returns:
            Dictionary with per-scenario results and overall pass/fail status
        """
        if scenarios is None:
            scenarios = default_scenarios(self.k8s.namespace, self.sa_name)

        log_info("\n" + "=" * 70)
        log_info("🔐 SERVICE ACCOUNT OAUTH CLIENT EVENTS")
        log_info("=" * 70 + "\n")

        results = {}
        for index, scenario in enumerate(scenarios, 1):
            log_info(f"{index}. {scenario.name}")
            results[scenario.name] = self.run_scenario(scenario)
            if results[scenario.name]['passed']:
                log_success(f"   ✅ {scenario.name}")
            else:
                log_error(f"   ❌ {scenario.name}: {results[scenario.name]['error']}")

        failed = [name for name, result in results.items() if not result['passed']]
        log_info("\n" + "=" * 70)
        if failed:
            log_warning(f"⚠️  {len(failed)}/{len(scenarios)} scenario(s) failed")
        else:
            log_success(f"✅ All {len(scenarios)} scenarios passed")
        log_info("=" * 70 + "\n")

        return {
            'passed': not failed,
            'scenarios': results,
            'failed': failed,
        }

    def run_scenario(self, scenario: Scenario) -> Dict[str, Any]:
        """
        Configure the service account, run the flow and check events.

        Returns:
            Dictionary with the flow operations, matched events and pass/fail
        """
        redirect = self.callback_url if scenario.num_events == 0 else scenario.annotation
        log_debug(f"   annotationPrefix {scenario.annotation_prefix}, annotation {scenario.annotation}")

        result: Dict[str, Any] = {'passed': False, 'operations': [], 'events': 0}
        try:
            service_account = self.k8s.annotate_service_account(
                self.sa_name, scenario.annotation_prefix, redirect
            )
            secret = self.k8s.wait_for_token_secret(
                service_account, create=self.create_token_secret
            )
            config = self.client_config(service_account, secret, redirect)

            driver = OAuthFlowDriver(config, self.signals, self.settings)
            try:
                flow = driver.run(
                    expected_operations=APPROVAL_FLOW_OPERATIONS,
                    expect_bad_request=scenario.expect_bad_request,
                )
                result['operations'] = flow.operations
            finally:
                try:
                    self.k8s.delete_oauth_client_authorization(self.admin_user, config.client_id)
                except ApiException as e:
                    log_warning(f"   ⚠️  Failed to delete OAuth client authorization: {e.reason}")

            events = collect_events_with_reason(
                self.k8s.wait_for_events(scenario.num_events),
                scenario.expected_event_reason,
            )
            result['events'] = len(events)
            if len(events) != scenario.num_events:
                result['error'] = f"expected {scenario.num_events} events, found {len(events)}"
                return result
            if scenario.num_events and events[0].message != scenario.expected_event_msg:
                result['error'] = (
                    f"expected event message {scenario.expected_event_msg}, "
                    f"got {events[0].message}"
                )
                return result

            result['passed'] = True
            return result
        except OAuthFlowError as e:
            result['operations'] = e.operations
            result['error'] = str(e)
            return result
        except (TimeoutError, ApiException) as e:
            result['error'] = str(e)
            return result
        finally:
            try:
                self.k8s.delete_events()
            except ApiException as e:
                log_warning(f"   ⚠️  Failed to delete events: {e.reason}")
