"""
Flow suite fixtures.

An in-process stand-in for the cluster OAuth endpoints, served by
pytest-httpserver. It reproduces the server-directed steps the driver has
to walk: a Basic challenge, a redirect to an approval page carrying one
form, and a redirect back to the client's redirect URI with a code or an
error.
"""

from html import escape
from typing import Dict, List
from urllib.parse import parse_qs, urlencode, urlsplit

import pytest
from pytest_httpserver import HTTPServer
from werkzeug.wrappers import Request, Response

from oauth_validator.flow import ClientConfig
from oauth_validator.settings import FlowSettings

CLIENT_ID = "system:serviceaccount:test-project:default"
CLIENT_SECRET = "sa-token"
APPROVAL_CSRF = "approval-csrf-1"

APPROVAL_FORM = """
<form action="approve" method="post">
  <input type="hidden" name="then" value="{then}">
  <input type="hidden" name="csrf" value="{csrf}">
  <input type="hidden" name="client_id" value="{client_id}">
  <div class="scopes">
    <label><input type="checkbox" name="scope" value="user:info" checked> user:info</label>
    <label><input type="checkbox" name="scope" value="user:full"> user:full</label>
  </div>
  {buttons}
</form>
"""

APPROVE_BUTTON = '<input type="submit" name="approve" value="Allow selected permissions">'
DENY_BUTTON = '<input type="submit" name="deny" value="Deny">'


def _redirect(location: str) -> Response:
    return Response(status=302, headers={"Location": location})


def _valid_redirect_uri(uri: str) -> bool:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class FakeOAuthServer:
    """Authorize/approve/token endpoints with just enough state for one client."""

    def __init__(self, httpserver: HTTPServer, username: str = "harold",
                 password: str = "any-pass"):
        self.httpserver = httpserver
        self.username = username
        self.password = password
        self.requests: List[Dict[str, object]] = []
        self.decisions: Dict[str, str] = {}
        self.issued_codes: Dict[str, str] = {}
        self.submitted_forms: List[Dict[str, List[str]]] = []
        self.form_count = 1
        self.deny_first = False
        self.reject_credentials = False

    def url_for(self, path: str) -> str:
        return self.httpserver.url_for(path)

    def register(self):
        self.httpserver.expect_request("/oauth/authorize").respond_with_handler(self.authorize)
        self.httpserver.expect_request(
            "/oauth/authorize/approve", method="GET"
        ).respond_with_handler(self.approval_page)
        self.httpserver.expect_request(
            "/oauth/authorize/approve", method="POST"
        ).respond_with_handler(self.approve)
        self.httpserver.expect_request("/oauth/token", method="POST").respond_with_handler(self.token)
        self.httpserver.expect_request("/broken").respond_with_data("boom", status=500)
        self.httpserver.expect_request("/elsewhere").respond_with_data(
            "<html><body>nothing to see</body></html>", content_type="text/html"
        )

    def _record(self, request: Request):
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "headers": dict(request.headers),
        })

    def _authenticated(self, request: Request) -> bool:
        auth = request.authorization
        if auth is None or self.reject_credentials:
            return False
        return auth.username == self.username and auth.password == self.password

    def _challenge(self) -> Response:
        return Response("Unauthorized", status=401,
                        headers={"WWW-Authenticate": 'Basic realm="openshift"'})

    def authorize(self, request: Request) -> Response:
        self._record(request)
        if not self._authenticated(request):
            return self._challenge()

        client_id = request.args.get("client_id", "")
        redirect_uri = request.args.get("redirect_uri", "")
        if not _valid_redirect_uri(redirect_uri):
            return Response(f"invalid redirect_uri {redirect_uri!r}", status=400)

        decision = self.decisions.pop(client_id, None)
        if decision is None:
            then = request.full_path
            return _redirect("/oauth/authorize/approve?" + urlencode({"then": then}))

        separator = "&" if "?" in redirect_uri else "?"
        if decision == "deny":
            return _redirect(f"{redirect_uri}{separator}error=access_denied")
        code = f"code-{len(self.issued_codes) + 1}"
        self.issued_codes[code] = client_id
        return _redirect(f"{redirect_uri}{separator}code={code}")

    def approval_page(self, request: Request) -> Response:
        self._record(request)
        if not self._authenticated(request):
            return self._challenge()

        then = request.args.get("then", "")
        client_id = parse_qs(urlsplit(then).query).get("client_id", [""])[0]
        buttons = [APPROVE_BUTTON, DENY_BUTTON]
        if self.deny_first:
            buttons.reverse()
        form = APPROVAL_FORM.format(
            then=escape(then), csrf=APPROVAL_CSRF, client_id=escape(client_id),
            buttons="\n  ".join(buttons),
        )
        body = "<html><body><h1>Authorize Access</h1>" + form * self.form_count + "</body></html>"
        response = Response(body, status=200, content_type="text/html")
        response.set_cookie("csrf", APPROVAL_CSRF, path="/")
        return response

    def approve(self, request: Request) -> Response:
        self._record(request)
        if not self._authenticated(request):
            return self._challenge()
        if request.headers.get("X-CSRF-Token") != "1":
            return Response("missing csrf header", status=403)
        if request.cookies.get("csrf") != request.form.get("csrf"):
            return Response("csrf mismatch", status=403)

        self.submitted_forms.append(request.form.to_dict(flat=False))
        client_id = request.form.get("client_id", "")
        self.decisions[client_id] = "approve" if "approve" in request.form else "deny"
        return _redirect(request.form.get("then", "/"))

    def token(self, request: Request) -> Response:
        self._record(request)
        code = request.form.get("code", "")
        client_id = request.form.get("client_id")
        client_secret = request.form.get("client_secret")
        if request.authorization is not None:
            client_id = request.authorization.username
            client_secret = request.authorization.password
        if self.issued_codes.get(code) != client_id or client_secret != CLIENT_SECRET:
            return Response('{"error": "invalid_grant"}', status=400,
                            content_type="application/json")
        del self.issued_codes[code]
        return Response(
            '{"access_token": "token-for-%s", "token_type": "Bearer"}' % client_id,
            status=200,
            content_type="application/json",
        )


@pytest.fixture(scope="session")
def httpserver_listen_address():
    # An IP host keeps cookie handling free of the ".local" suffix cookiejar
    # applies to dotless host names
    return ("127.0.0.1", 0)


@pytest.fixture
def fake_oauth(httpserver: HTTPServer) -> FakeOAuthServer:
    server = FakeOAuthServer(httpserver)
    server.register()
    return server


@pytest.fixture
def flow_settings() -> FlowSettings:
    """Fast settings for the in-process server."""
    return FlowSettings(code_timeout=2.0, request_timeout=10.0)


@pytest.fixture
def client_config(fake_oauth: FakeOAuthServer, callback_server) -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        authorize_url=fake_oauth.url_for("/oauth/authorize"),
        token_url=fake_oauth.url_for("/oauth/token"),
        redirect_url=callback_server.callback_url,
        scope="user:info role:edit:test-project",
    )
