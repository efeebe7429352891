"""Exception hierarchy translated into HTTP outcomes by the route layer."""

from __future__ import annotations


class MediaBridgeError(Exception):
    """Base class for errors raised while answering a client request."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message}


class NotFoundError(MediaBridgeError, LookupError):
    """An id, collection, season, episode or image could not be resolved."""

    status_code = 404


class BadRequestError(MediaBridgeError, ValueError):
    """The client sent a payload or parameter that cannot be interpreted."""

    status_code = 400


class UnknownIdPrefixError(BadRequestError):
    """An opaque id carried a type prefix this server never issues."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(f"Unknown item prefix {prefix!r}")


class UnauthorizedError(MediaBridgeError):
    """The request carried no access token or an unknown one."""

    status_code = 401


class UnimplementedError(MediaBridgeError):
    """Operations the server refuses to perform, such as deleting media."""

    status_code = 403
