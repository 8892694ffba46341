class Unauthorized(Exception):
    """No valid user context on the request."""


class InvalidRequest(ValueError):
    """Missing or malformed request parameters."""


class NotFound(LookupError):
    """A ledger row required by the requested operation does not exist."""


class InternalFailure(RuntimeError):
    """Record store or computation failure. Safe to retry."""
