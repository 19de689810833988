"""Typed exceptions raised by the link registry and its stores."""


class RegistryError(Exception):
    """Base class for every registry failure."""


class InvalidUrl(RegistryError, ValueError):
    """The URL is not a valid absolute http(s) URL."""


class InvalidValidity(RegistryError, ValueError):
    """The validity period is not an integer within the allowed range."""


class InvalidShortCode(RegistryError, ValueError):
    """A custom short code does not match the allowed pattern or is reserved."""


class ShortCodeTaken(RegistryError):
    """The short code is held by another record (expired or not)."""


class CodeGenerationFailed(RegistryError):
    """No free random code was found within the allowed number of attempts."""


class NotFound(RegistryError):
    """No record holds the requested short code."""


class Expired(RegistryError):
    """The record exists but its validity period is over."""


class StorageError(RegistryError):
    """Persistent storage failure (database or Redis I/O)."""
