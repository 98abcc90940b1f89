"""Error taxonomy shared by the registry, the registrar and the resolver.

Registrar errors carry the HTTP status and the wire ``code`` they map to, so
the server can report them and the wire client can raise the same type again.
"""

from __future__ import annotations


class VirtError(Exception):
    """Base class for every error raised by the virt package."""


class StorageUnavailable(VirtError):
    """The registry store could not be opened; no registry operation may run."""


class RegistrarError(VirtError):
    """A registrar operation was rejected for a specific, reportable reason."""

    status_code = 400
    code = "RegistrarError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidInput(RegistrarError):
    status_code = 400
    code = "InvalidInput"


class InvalidTag(RegistrarError):
    status_code = 400
    code = "InvalidTag"


class Unauthorized(RegistrarError):
    status_code = 401
    code = "Unauthorized"


class NotFound(RegistrarError):
    status_code = 404
    code = "NotFound"


class Conflict(RegistrarError):
    status_code = 409
    code = "Conflict"


ERRORS_BY_CODE: dict[str, type[RegistrarError]] = {
    cls.code: cls for cls in (InvalidInput, InvalidTag, Unauthorized, NotFound, Conflict)
}


class UpstreamFetchFailure(VirtError):
    """A registrar lookup or content fetch failed at the transport level."""


class NavigationDenied(VirtError):
    """An address was blocked before any navigation happened."""
