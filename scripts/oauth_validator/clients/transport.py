"""
Credential-Injecting Transport
==============================

Transport adapter that passes requests through untouched until the flow
has been challenged, then stamps HTTP Basic credentials on every request.
"""

from ..logging import log_debug

from typing import Optional

import requests
from requests.adapters import BaseAdapter, HTTPAdapter
from requests.auth import HTTPBasicAuth


class BasicAuthTransport(BaseAdapter):
    """Wraps an inner adapter and injects Basic auth once credentials are set."""

    def __init__(self, inner: Optional[BaseAdapter] = None):
        """
        Args:
            inner: Adapter that actually talks to the network. Defaults to an
                   HTTPAdapter with retries disabled.
        """
        super().__init__()
        self.inner = inner if inner is not None else HTTPAdapter(max_retries=0)
        self.username = ""
        self.password = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username or self.password)

    def set_credentials(self, username: str, password: str):
        log_debug(f"  Using basic auth credentials for {username}")
        self.username = username
        self.password = password

    def send(self, request: requests.PreparedRequest, **kwargs) -> requests.Response:
        if self.has_credentials:
            HTTPBasicAuth(self.username, self.password)(request)
        return self.inner.send(request, **kwargs)

    def close(self):
        self.inner.close()


def dump_response(response: requests.Response) -> str:
    """Render a response (status line, headers, body) for diagnostics."""
    lines = [f"HTTP/1.1 {response.status_code} {response.reason or ''}".rstrip()]
    lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    try:
        body = response.text
    except (UnicodeDecodeError, LookupError):
        body = repr(response.content)
    return "\r\n".join(lines) + "\r\n\r\n" + body
