from __future__ import annotations

from typing import Optional


class EnablementError(Exception):
    """Base class for fatal errors raised while enabling sensitivity labels."""


class PreconditionError(EnablementError):
    """Host environment or configuration does not meet the minimum requirement."""


class DependencyInstallError(EnablementError):
    def __init__(self, package: str, message: str):
        super().__init__(f"Failed to install {package}: {message}")
        self.package = package


class ServiceConnectionError(EnablementError, ConnectionError):
    def __init__(self, service: str, message: str):
        super().__init__(f"Could not connect to {service}: {message}")
        self.service = service


class NotFoundError(EnablementError):
    pass


class AmbiguousMatchError(EnablementError):
    pass


class RemoteOperationError(EnablementError):
    """A create, update, toggle, or command call was rejected by a remote service."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body
