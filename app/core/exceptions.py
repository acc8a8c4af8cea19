"""
Error taxonomy for call control and recording reconciliation.

Lookup misses are not errors and never appear here: resolvers return
``None`` and callers branch on absence.
"""
from typing import Optional


class ConfigurationError(Exception):
    """A required provider setting (API key, app id, SIP connection) is missing."""


class DialerValidationError(Exception):
    """Caller-supplied input to the outbound dialer is unusable."""


class CallNotFoundError(Exception):
    """No call record exists for the given call SID."""


class TelnyxAPIError(Exception):
    """
    Telnyx responded with a non-2xx status, or could not be reached.

    ``status_code`` is 0 for transport failures (timeouts, DNS, resets).
    """

    def __init__(self, status_code: int, detail: str, path: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        self.path = path
        super().__init__(f"Telnyx error {status_code} on {path or 'request'}: {detail}")

    @property
    def is_not_answered(self) -> bool:
        # Transfer issued before the leg finished answering.
        return self.status_code == 422

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429
