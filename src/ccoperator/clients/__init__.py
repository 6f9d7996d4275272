from ccoperator.clients.base import (
    BaseHTTPClient,
    HTTPResponse,
    PermanentHTTPError,
    RetryableHTTPError,
)
from ccoperator.clients.cruisecontrol import CruiseControlClient

__all__ = [
    "BaseHTTPClient",
    "CruiseControlClient",
    "HTTPResponse",
    "PermanentHTTPError",
    "RetryableHTTPError",
]
