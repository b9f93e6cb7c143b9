"""
OAuth Callback Receiver
=======================

Local HTTP endpoint registered as the OAuth redirect URI. Whatever code or
error the authorization server hands back is published on single-slot
queues that the flow driver waits on.
"""

from ..logging import log_debug, log_warning

import queue
import threading
import time
from typing import NamedTuple, Optional

from flask import Flask, request
from werkzeug.serving import make_server

DEFAULT_CALLBACK_PATH = "/oauthcallback"


class Signal(NamedTuple):
    """Outcome delivered by the callback endpoint."""

    kind: str  # "code" or "error"
    value: str


class AuthorizationSignals:
    """Code and error channels with a first-ready-wins wait over both."""

    def __init__(self, publish_timeout: float = 5.0):
        self.codes: "queue.Queue[str]" = queue.Queue(maxsize=1)
        self.errors: "queue.Queue[str]" = queue.Queue(maxsize=1)
        self.publish_timeout = publish_timeout
        self._ready = threading.Condition()

    def publish_code(self, code: str) -> bool:
        return self._publish(self.codes, "code", code)

    def publish_error(self, error: str) -> bool:
        return self._publish(self.errors, "error", error)

    def _publish(self, channel: "queue.Queue[str]", kind: str, value: str) -> bool:
        try:
            channel.put(value, timeout=self.publish_timeout)
        except queue.Full:
            log_warning(f"  ⚠️  Dropping authorization {kind}, previous value was never consumed")
            return False
        with self._ready:
            self._ready.notify_all()
        return True

    def drain(self) -> int:
        """Discard values left over from a previous run."""
        dropped = 0
        for channel in (self.codes, self.errors):
            while True:
                try:
                    channel.get_nowait()
                except queue.Empty:
                    break
                dropped += 1
        if dropped:
            log_debug(f"  Drained {dropped} stale authorization signal(s)")
        return dropped

    def _take(self) -> Optional[Signal]:
        try:
            return Signal("code", self.codes.get_nowait())
        except queue.Empty:
            pass
        try:
            return Signal("error", self.errors.get_nowait())
        except queue.Empty:
            return None

    def wait(self, timeout: float) -> Optional[Signal]:
        """
        Block until a code or an error arrives.

        Args:
            timeout: Seconds to wait

        Returns:
            The first signal available, or None on timeout
        """
        deadline = time.monotonic() + timeout
        with self._ready:
            while True:
                signal = self._take()
                if signal is not None:
                    return signal
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._ready.wait(remaining)


def create_callback_app(signals: AuthorizationSignals) -> Flask:
    """Flask app that publishes ``code``/``error`` query parameters of any path."""
    app = Flask(__name__)

    @app.route("/", defaults={"path": ""}, methods=["GET", "POST"])
    @app.route("/<path:path>", methods=["GET", "POST"])
    def callback(path):
        code = request.args.get("code", "")
        error = request.args.get("error", "")
        log_debug(f"  Callback /{path}: code={'yes' if code else 'no'} error={error or 'none'}")
        if code:
            signals.publish_code(code)
        if error:
            signals.publish_error(error)
        return ""

    return app


class CallbackServer:
    """Serves the callback app on a background thread."""

    def __init__(self, signals: AuthorizationSignals, host: str = "127.0.0.1",
                 port: int = 0, path: str = DEFAULT_CALLBACK_PATH):
        """
        Args:
            signals: Channels the callback publishes to
            host: Interface to bind
            port: Port to bind (0 picks a free one)
            path: Path advertised as the redirect URI
        """
        self.signals = signals
        self.host = host
        self.port = port
        self.path = path
        self.app = create_callback_app(signals)
        self._server = None
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        if self._server is None:
            raise RuntimeError("Callback server is not running")
        return f"http://{self.host}:{self._server.server_port}"

    @property
    def callback_url(self) -> str:
        return self.url + self.path

    def start(self) -> "CallbackServer":
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="oauth-callback", daemon=True
        )
        self._thread.start()
        log_debug(f"  Callback server listening on {self.callback_url}")
        return self

    def stop(self):
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None

    def __enter__(self) -> "CallbackServer":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
