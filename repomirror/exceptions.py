"""Application-level exception types.

Convention:
- ``InternalServerError``: errors whose details must never reach clients
  (decryption failures, config validation, etc.). The global handler logs the
  full message at ERROR and returns a generic "Internal server error" (500).
- ``ValueError``: business validation errors that are safe to
  forward to clients. The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
- The sync errors below are attempt-level failures. Routers translate them
  to HTTP status codes; background dispatch only logs and records them.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``repomirror/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class CloneNotFoundError(LookupError):
    """No clone relationship exists with the requested id."""


class SyncDisabledError(Exception):
    """The clone relationship has sync turned off."""


class MissingCredentialError(Exception):
    """The clone relationship has no usable stored GitHub credential.

    Terminal for the attempt: sync is never retried with another credential.
    """
