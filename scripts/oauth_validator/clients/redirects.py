"""
Redirect Interceptor
====================

requests.Session that reports every redirect hop it follows.
"""

from typing import Callable, Optional

import requests

RedirectObserver = Callable[[requests.PreparedRequest, requests.Response], None]


class RedirectRecordingSession(requests.Session):
    """Session that calls an observer for each redirect before following it.

    The redirect cap is the session's own ``max_redirects``.
    """

    def __init__(self, observer: Optional[RedirectObserver] = None):
        super().__init__()
        self.observer = observer
        # No proxies or netrc credentials from the environment
        self.trust_env = False
        self._lookahead = 0

    def resolve_redirects(self, resp, req, *args, yield_requests=False, **kwargs):
        hops = super().resolve_redirects(resp, req, *args, yield_requests=yield_requests, **kwargs)
        if not yield_requests:
            yield from hops
            return

        # send() builds Response.next with yield_requests=True; those hops are never sent
        while True:
            self._lookahead += 1
            try:
                hop = next(hops)
            except StopIteration:
                return
            finally:
                self._lookahead -= 1
            yield hop

    def rebuild_auth(self, prepared_request, response):
        # Called by resolve_redirects once per hop, right before the hop is sent.
        super().rebuild_auth(prepared_request, response)
        if self.observer is not None and not self._lookahead:
            self.observer(prepared_request, response)
