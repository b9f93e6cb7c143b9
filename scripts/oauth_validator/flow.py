"""
OAuth Flow Driver
=================

Walks a server-directed OAuth authorization-code flow the way a browser
would (401 challenge, approval forms, redirects) and records every step as
a symbolic operation. The recorded trace is compared verbatim against the
sequence a test expects.

Trace tokens:
    "GET <path>" / "POST <path>"   request about to be sent
    "received challenge"           401, credentials set for the rest of the run
    "redirect to <path>"           redirect hop followed by the session
    "form"                         single form found and submitted
    "code" / "error:<value>"       outcome delivered to the callback endpoint
"""

from .clients.callback import AuthorizationSignals
from .clients.html_forms import find_forms, request_from_form
from .clients.redirects import RedirectRecordingSession
from .clients.transport import BasicAuthTransport, dump_response
from .exceptions import (
    FlowTimeoutError,
    FormCountError,
    OAuthFlowError,
    TraceMismatchError,
    TransportError,
    UnexpectedStatusError,
)
from .logging import log_debug, log_info
from .settings import FlowSettings

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

# Trace of a successful approval with a valid redirect URI
APPROVAL_FLOW_OPERATIONS = [
    "GET /oauth/authorize",
    "received challenge",
    "GET /oauth/authorize",
    "redirect to /oauth/authorize/approve",
    "form",
    "POST /oauth/authorize/approve",
    "redirect to /oauth/authorize",
    "redirect to /oauthcallback",
    "code",
]

# Headers of a followed redirect that must not be replayed on a retry
_REDIRECT_DROP_HEADERS = {"cookie", "content-length", "authorization"}


def join_scopes(scopes: Iterable[str]) -> str:
    return " ".join(scopes)


def service_account_username(namespace: str, name: str) -> str:
    return f"system:serviceaccount:{namespace}:{name}"


def _path_of(url: str) -> str:
    return urlsplit(url).path


@dataclass(frozen=True)
class ClientConfig:
    """OAuth client registration used for one flow run."""

    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    redirect_url: str
    scope: str = ""
    send_client_secret_in_params: bool = True

    def authorize_url_with_params(self, state: str = "") -> str:
        """Authorize URL carrying the code-grant query parameters."""
        parts = urlsplit(self.authorize_url)
        params = parse_qsl(parts.query, keep_blank_values=True)
        params.append(("response_type", "code"))
        params.append(("client_id", self.client_id))
        params.append(("redirect_uri", self.redirect_url))
        if self.scope:
            params.append(("scope", self.scope))
        if state:
            params.append(("state", state))
        return urlunsplit(parts._replace(query=urlencode(params)))

    def token_request(self, code: str) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        """
        Form fields and Basic auth pair for exchanging ``code``.

        Returns:
            (data, auth) where auth is None when the secret travels in the form
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
        }
        if self.send_client_secret_in_params:
            data["client_id"] = self.client_id
            data["client_secret"] = self.client_secret
            return data, None
        return data, (self.client_id, self.client_secret)


@dataclass
class FlowResult:
    """Outcome of one flow run."""

    operations: List[str]
    code: Optional[str] = None
    error: Optional[str] = None
    bad_request: bool = False
    response_dump: Optional[str] = None

    def assert_operations(self, expected: List[str]):
        if self.operations != list(expected):
            raise TraceMismatchError(expected, self.operations)


@dataclass
class FlowState:
    """Mutable state of a single run; discarded once the trace is checked."""

    request: requests.Request
    transport: BasicAuthTransport
    operations: List[str] = field(default_factory=list)

    def record(self, operation: str):
        self.operations.append(operation)

    def follow_redirect(self, prepared: requests.PreparedRequest, response: requests.Response):
        log_debug(f"  {response.status_code} Location: {prepared.url}")
        headers = {
            name: value for name, value in prepared.headers.items()
            if name.lower() not in _REDIRECT_DROP_HEADERS
        }
        self.request = requests.Request(
            prepared.method, prepared.url, headers=headers, data=prepared.body
        )
        self.record("redirect to " + _path_of(prepared.url))


class OAuthFlowDriver:
    """Runs the browser-style authorization-code flow for one client."""

    def __init__(self, client_config: ClientConfig, signals: AuthorizationSignals,
                 settings: Optional[FlowSettings] = None):
        """
        Args:
            client_config: OAuth client to authorize
            signals: Channels fed by the redirect URI endpoint
            settings: Flow constants (defaults to FlowSettings())
        """
        self.client_config = client_config
        self.signals = signals
        self.settings = settings or FlowSettings()

    def _new_session(self, state: FlowState) -> RedirectRecordingSession:
        session = RedirectRecordingSession(observer=state.follow_redirect)
        session.verify = self.settings.verify_tls
        session.mount("http://", state.transport)
        session.mount("https://", state.transport)
        return session

    def run(self, expected_operations: Optional[List[str]] = None,
            expect_bad_request: bool = False) -> FlowResult:
        """
        Walk the flow from the authorize URL to the callback.

        Args:
            expected_operations: Trace the run must produce (not checked if None)
            expect_bad_request: Treat a 400 as the expected end of the run

        Returns:
            FlowResult with the recorded operations and the code or error

        Raises:
            OAuthFlowError: On any protocol deviation, transport failure,
                            timeout, or trace mismatch
        """
        self.signals.drain()

        state = FlowState(
            request=requests.Request("GET", self.client_config.authorize_url_with_params()),
            transport=BasicAuthTransport(),
        )
        session = self._new_session(state)
        try:
            result = self._walk(session, state, expect_bad_request)
        finally:
            session.close()

        if result.bad_request:
            return result

        signal = self.signals.wait(self.settings.code_timeout)
        if signal is None:
            raise FlowTimeoutError("didn't get a code or an error", state.operations)
        if signal.kind == "code":
            state.record("code")
            result.code = signal.value
        else:
            state.record("error:" + signal.value)
            result.error = signal.value
        log_debug(f"  Flow finished: {state.operations}")

        if expected_operations is not None:
            result.assert_operations(expected_operations)
        return result

    def _walk(self, session: RedirectRecordingSession, state: FlowState,
              expect_bad_request: bool) -> FlowResult:
        while True:
            request = state.request
            log_debug(f"  {request.method} {request.url}")
            state.record(f"{request.method} {_path_of(request.url)}")

            # Always set the csrf header
            request.headers[self.settings.csrf_header] = self.settings.csrf_token
            try:
                response = session.send(
                    session.prepare_request(request),
                    allow_redirects=True,
                    timeout=self.settings.request_timeout,
                )
            except requests.RequestException as e:
                raise TransportError(
                    f"Error sending {request.method} {request.url}: {e}",
                    state.operations,
                    cookies=session.cookies.get_dict(),
                ) from e

            with response:
                # Redirects resolved by the session end on this URL
                current_url = response.url

                if response.status_code == 401:
                    if state.transport.has_credentials:
                        raise UnexpectedStatusError(
                            401, dump_response(response), state.operations
                        )
                    state.transport.set_credentials(
                        self.settings.challenge_username, self.settings.challenge_password
                    )
                    state.record("received challenge")
                    continue

                if expect_bad_request and response.status_code == 400:
                    response_dump = dump_response(response)
                    log_info(f"  Bad Request: {response_dump}")
                    return FlowResult(
                        operations=state.operations,
                        bad_request=True,
                        response_dump=response_dump,
                    )

                if response.status_code != 200:
                    raise UnexpectedStatusError(
                        response.status_code, dump_response(response), state.operations
                    )

                try:
                    forms = find_forms(response.text)
                except ValueError as e:
                    raise OAuthFlowError(
                        f"Error parsing response body: {e}\n{dump_response(response)}",
                        state.operations,
                    ) from e

            if len(forms) > 1:
                raise FormCountError(len(forms), state.operations)
            if not forms:
                return FlowResult(operations=state.operations)

            try:
                state.request = request_from_form(forms[0], current_url)
            except OAuthFlowError as e:
                e.operations = list(state.operations)
                raise
            state.record("form")

    def exchange_code(self, code: str) -> dict:
        """
        Exchange an authorization code at the token endpoint.

        Returns:
            Decoded token response

        Raises:
            UnexpectedStatusError: If the token endpoint does not answer 200
            TransportError: On connection failures
        """
        data, auth = self.client_config.token_request(code)
        with requests.Session() as session:
            session.verify = self.settings.verify_tls
            try:
                response = session.post(
                    self.client_config.token_url,
                    data=data,
                    auth=auth,
                    headers={self.settings.csrf_header: self.settings.csrf_token},
                    timeout=self.settings.request_timeout,
                )
            except requests.RequestException as e:
                raise TransportError(f"Error exchanging code: {e}") from e

            if response.status_code != 200:
                raise UnexpectedStatusError(response.status_code, dump_response(response))
            return response.json()
