"""Application-level exception types.

Convention:
- ``InternalServerError`` — for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError`` — for *business logic* validation errors that are safe to
  forward to clients.  The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
- ``LookupError`` subclasses — for missing or foreign-owned records.  Routers
  translate them to 404 so ownership is never disclosed.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class InvalidVersionError(ValueError):
    """Stored version is not a well-formed ``MAJOR.MINOR.PATCH`` string."""


class BundleAssetError(ValueError):
    """Operation requires inline content but the asset is stored as a bundle."""


class AssetNotFoundError(LookupError):
    """Asset is missing, deleted, or owned by another user."""


class MachineNotFoundError(LookupError):
    """Machine is missing or owned by another user."""


class DuplicateMachineError(ValueError):
    """A machine with the same identifier is already registered for the user."""


class VersionConflictError(Exception):
    """The asset moved to a newer version while a push was being applied."""
