# incident_sync/reports_api/exceptions.py
#
#
# Imports
from typing import Optional
#
# Local Imports
from ..Constants import AUTH_FAILURE_STATUS_CODES, PERMANENT_REJECT_STATUS_CODES
#
#######################################################################################################################
#
# Functions:

class CitizenAPIError(Exception):
    """Base exception for reports API errors."""
    pass

class APIConnectionError(CitizenAPIError):
    """Raised for network or connection issues (DNS failure, refused connection, dropped response)."""
    pass

class APITimeoutError(APIConnectionError):
    """Raised when the server did not answer within the configured timeout."""
    pass

class APIRequestError(CitizenAPIError):
    """Raised for errors in constructing the request (e.g., a payload that cannot be encoded)."""
    pass

class APIResponseError(CitizenAPIError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: Optional[dict] = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class ServerValidationError(APIResponseError):
    """The server rejected the record as sent; resubmitting the same payload will not help."""
    pass

class AuthenticationError(APIResponseError):
    """Raised for authentication failures."""
    pass


def error_for_status(status_code: int, message: str, response_data: Optional[dict] = None) -> APIResponseError:
    """Builds the most specific exception for an HTTP error status."""
    if status_code in AUTH_FAILURE_STATUS_CODES:
        return AuthenticationError(status_code, f"Authentication failed: {message}", response_data)
    if status_code in PERMANENT_REJECT_STATUS_CODES:
        return ServerValidationError(status_code, message, response_data)
    return APIResponseError(status_code, message, response_data)


def is_permanent_failure(exc: BaseException) -> bool:
    """
    True when a submission failed in a way retrying cannot fix.

    Everything else (connection errors, timeouts, 5xx, 408/429, auth problems) is treated as transient.
    """
    return isinstance(exc, ServerValidationError)

#
# End of incident_sync/reports_api/exceptions.py
########################################################################################################################
