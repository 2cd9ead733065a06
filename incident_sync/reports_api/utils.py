# incident_sync/reports_api/utils.py
#
#
# Imports
import base64
import mimetypes
from pathlib import Path
from typing import Dict, Any, Optional, Union
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from ..Constants import LOCAL_ONLY_FIELDS
from .schemas import RecordListPage
#
#######################################################################################################################
#
# Functions:

def build_submission_body(payload: Dict[str, Any], captured_at: int) -> Dict[str, Any]:
    """
    Builds the JSON body for a create call: the record's domain fields plus its capture timestamp.
    Local bookkeeping keys are dropped even if a caller stored them in the payload.
    """
    body = {key: value for key, value in payload.items() if key not in LOCAL_ONLY_FIELDS}
    body["timestamp"] = captured_at
    return body


def extract_record_id(item: Dict[str, Any]) -> Optional[str]:
    """Returns the server id of a listed record (`_id` from Mongo, or `id`)."""
    for key in ("_id", "id"):
        value = item.get(key)
        if isinstance(value, dict) and "$oid" in value:
            value = value["$oid"]
        if value:
            return str(value)
    return None


def extract_error_detail(response: httpx.Response) -> tuple:
    """
    Pulls a human-readable message out of an error response.

    Returns:
        (detail, response_data) where response_data is the decoded JSON body or None.
    """
    detail = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        response_data = response.json()
    except ValueError:
        return (response.text[:500] or detail), None
    if isinstance(response_data, dict):
        if isinstance(response_data.get("detail"), list) and response_data["detail"]:
            first = response_data["detail"][0]
            loc = '.'.join(map(str, first.get('loc', [])))
            detail = f"Validation Error: {first.get('msg', '')} for field '{loc}'"
        elif isinstance(response_data.get("detail"), str):
            detail = response_data["detail"]
        elif isinstance(response_data.get("error"), str):
            detail = response_data["error"]
    return detail, response_data


def parse_list_response(data: Any, page: int) -> RecordListPage:
    """
    Normalizes a listing response. The server answers {"data", "total", "pages"};
    older deployments answer with a bare list, treated as a single complete page.
    """
    if isinstance(data, list):
        return RecordListPage(items=data, total=len(data), pages=1, page=page)
    if isinstance(data, dict):
        items = data.get("data", data.get("items", []))
        if not isinstance(items, list):
            items = []
        total = _first_present(data, "total", "totalCount")
        pages = _first_present(data, "pages", "pageCount")
        total = len(items) if total is None else int(total)
        pages = 1 if pages is None else int(pages)
        return RecordListPage(items=items, total=total, pages=max(pages, 1), page=page)
    raise ValueError(f"Unexpected list response type: {type(data).__name__}")


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    """First non-null value among `keys`; servers send null for unknown totals."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def encode_evidence_file(file_path: Union[str, Path]) -> str:
    """
    Reads a photo from disk and returns it as a data URL for the `evidenceBase64` field.

    Raises:
        FileNotFoundError: If the path is not a file.
    """
    file_path_obj = Path(file_path)
    if not file_path_obj.is_file():
        raise FileNotFoundError(f"Evidence file not found: {file_path}")

    mime_type, _ = mimetypes.guess_type(file_path_obj.name)
    if mime_type is None:
        mime_type = 'application/octet-stream'
        logger.warning(f"Could not guess MIME type for {file_path_obj.name}. Defaulting to {mime_type}.")

    encoded = base64.b64encode(file_path_obj.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"

#
# End of utils.py
#######################################################################################################################
