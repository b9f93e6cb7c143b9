"""
Flow driver exceptions.

Every error raised while walking a flow carries the operations recorded so
far, so a failing run can always be diagnosed from its partial trace.
"""

from typing import Dict, List, Optional


class OAuthFlowError(Exception):
    """Base class for failures of a single OAuth flow run."""

    def __init__(self, message: str, operations: Optional[List[str]] = None):
        super().__init__(message)
        self.operations = list(operations or [])

    def __str__(self) -> str:
        message = super().__str__()
        if self.operations:
            return f"{message} (operations: {self.operations})"
        return message


class UnexpectedStatusError(OAuthFlowError):
    """The server answered with a status the flow does not accept."""

    def __init__(self, status_code: int, response_dump: str,
                 operations: Optional[List[str]] = None, expected: int = 200):
        super().__init__(
            f"Expected status code {expected}, got {status_code}", operations
        )
        self.status_code = status_code
        self.response_dump = response_dump


class FormCountError(OAuthFlowError):
    """A page carried more than one form."""

    def __init__(self, count: int, operations: Optional[List[str]] = None):
        super().__init__(f"More than one form encountered: {count}", operations)
        self.count = count


class FormError(OAuthFlowError):
    """A form could not be turned into a request."""


class FlowTimeoutError(OAuthFlowError):
    """Neither a code nor an error reached the callback in time."""


class TransportError(OAuthFlowError):
    """Connection-level failure talking to the server."""

    def __init__(self, message: str, operations: Optional[List[str]] = None,
                 cookies: Optional[Dict[str, str]] = None):
        super().__init__(message, operations)
        self.cookies = dict(cookies or {})


class TraceMismatchError(OAuthFlowError, AssertionError):
    """The recorded operations differ from the expected sequence."""

    def __init__(self, expected: List[str], operations: List[str]):
        OAuthFlowError.__init__(
            self, f"Expected:\n{expected!r}\nGot\n{operations!r}", operations
        )
        self.expected = list(expected)

    def __str__(self) -> str:
        return self.args[0]
