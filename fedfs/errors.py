"""
Error taxonomy for the federation connector.

Every failure surfaced to a caller is a FederationError subclass carrying:
  - errno:     closest POSIX error (used by the CLI and log messages)
  - status:    HTTP status a transport layer should answer with
  - retryable: True only for transient I/O problems

Policy refusals (UnsupportedDirection) are never retryable; IOFailure is.
"""

import errno as _errno


class FederationError(Exception):
    """Base class for all connector errors."""

    errno: int = _errno.EIO
    status: int = 500
    retryable: bool = False

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class NotFederated(FederationError):
    """Path or URI lies outside every configured mount."""
    errno = _errno.ENOENT
    status = 404


class InvalidPath(FederationError):
    """Malformed path or traversal that would escape a mount root."""
    errno = _errno.EINVAL
    status = 400


class NotFound(FederationError):
    """Stat/read target does not exist (or vanished)."""
    errno = _errno.ENOENT
    status = 404


class SourceNotFound(NotFound):
    """Copy source does not exist or cannot be read."""


class DestinationConflict(FederationError):
    """Copy destination already exists and overwrite was not requested."""
    errno = _errno.EEXIST
    status = 409


class UnsupportedDirection(FederationError):
    """Write into the federation (or federation-side ancestor creation) refused."""
    errno = _errno.EPERM
    status = 502


class IOFailure(FederationError):
    """Underlying filesystem or transport error not otherwise classified."""
    errno = _errno.EIO
    status = 500
    retryable = True
