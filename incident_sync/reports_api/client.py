# incident_sync/reports_api/client.py
#
#
# Imports
from typing import Optional, Dict, Any
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..Metrics.metrics_logger import timed_request
from ..Constants import API_PREFIX, DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_PAGE_SIZE, IDEMPOTENCY_HEADER, KIND_COLLECTIONS
from .schemas import CreateRecordResponse, RecordListPage
from .exceptions import (
    APIConnectionError, APIRequestError, APIResponseError, APITimeoutError, error_for_status
)
from .utils import extract_error_detail, parse_list_response
#
########################################################################################################################
#
# Functions:

class CitizenAPIClient:
    """Async client for the reports server's CRUD endpoints."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "CitizenAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @staticmethod
    def _collection_path(kind: str, server_id: Optional[str] = None) -> str:
        collection = KIND_COLLECTIONS.get(kind)
        if collection is None:
            raise APIRequestError(f"Unknown record kind '{kind}'.")
        path = f"{API_PREFIX}/{collection}"
        if server_id is not None:
            path += f"/{server_id}"
        return path

    async def _send(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        request_kwargs: Dict[str, Any] = {"json": json_body, "params": params, "headers": headers}
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = await client.request(method, endpoint, **request_kwargs)
        except httpx.TimeoutException as e:
            raise APITimeoutError(f"Timed out talking to {url}: {e!r}") from e
        except httpx.RequestError as e:  # ConnectError, ReadError, RemoteProtocolError, ...
            raise APIConnectionError(f"Connection error to {url}: {e!r}") from e
        except (TypeError, ValueError) as e:
            raise APIRequestError(f"Could not encode request to {url}: {e}") from e

        if response.is_error:
            detail, response_data = extract_error_detail(response)
            logger.debug(f"{method} {endpoint} failed with {response.status_code}: {detail}")
            raise error_for_status(response.status_code, detail, response_data)
        return response

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text[:500]})

    @timed_request("api_create_record_duration_seconds")
    async def create_record(
        self,
        kind: str,
        body: Dict[str, Any],
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CreateRecordResponse:
        """POST a captured record. Returns the server-assigned id."""
        headers = {IDEMPOTENCY_HEADER: idempotency_key} if idempotency_key else None
        response = await self._send("POST", self._collection_path(kind), json_body=body,
                                     headers=headers, timeout=timeout)
        response_dict = self._decode_json(response)
        if not isinstance(response_dict, dict):
            raise APIResponseError(response.status_code, "Create response is not a JSON object",
                                   response_data={"raw": response_dict})
        if "id" not in response_dict and "_id" in response_dict:
            response_dict = {**response_dict, "id": response_dict["_id"]}
        try:
            return CreateRecordResponse(**response_dict)
        except ValidationError as e:
            raise APIResponseError(response.status_code, f"Create response missing record id: {e}",
                                   response_data=response_dict) from e

    @timed_request("api_list_records_duration_seconds")
    async def list_records(self, kind: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> RecordListPage:
        response = await self._send("GET", self._collection_path(kind), params={"page": page, "limit": page_size})
        data = self._decode_json(response)
        try:
            return parse_list_response(data, page)
        except (TypeError, ValueError, ValidationError) as e:
            raise APIResponseError(response.status_code, f"Unexpected list response: {e}",
                                   response_data={"raw": data}) from e

    async def update_record(self, kind: str, server_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._send("PUT", self._collection_path(kind, server_id), json_body=partial)
        return self._decode_json(response) or {}

    async def delete_record(self, kind: str, server_id: str) -> None:
        await self._send("DELETE", self._collection_path(kind, server_id))

#
# End of client.py
########################################################################################################################
