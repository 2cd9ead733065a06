# incident_sync/reports_api/__init__.py
from .client import CitizenAPIClient
from .exceptions import (
    CitizenAPIError, APIConnectionError, APITimeoutError, APIRequestError,
    APIResponseError, ServerValidationError, AuthenticationError, is_permanent_failure
)
from .schemas import (
    NeedType, LocationData, ReportPayload, PersonPayload,
    CreateRecordResponse, RecordListPage
)

__all__ = [
    "CitizenAPIClient",
    "CitizenAPIError", "APIConnectionError", "APITimeoutError", "APIRequestError",
    "APIResponseError", "ServerValidationError", "AuthenticationError", "is_permanent_failure",
    "NeedType", "LocationData", "ReportPayload", "PersonPayload",
    "CreateRecordResponse", "RecordListPage",
]
