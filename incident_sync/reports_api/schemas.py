# incident_sync/reports_api/schemas.py
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NeedType(str, Enum):
    AGUA_POTABLE = 'Agua Potable'
    LUZ_ELECTRICA = 'Luz Eléctrica'
    DRENAJE = 'Drenaje'
    SALUD = 'Salud'
    EDUCACION = 'Educación'
    SEGURIDAD = 'Seguridad'
    OTRO = 'Otro'


class LocationData(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# --- Capture Payloads (domain fields only, what the server receives) ---
class ReportPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    municipio: str = Field(..., min_length=1)
    comunidad: str = ""
    location: LocationData
    need_type: NeedType = Field(NeedType.AGUA_POTABLE, alias="needType")
    description: str = ""
    evidence_base64: Optional[str] = Field(None, alias="evidenceBase64")  # data URL of the compressed photo
    user: Optional[str] = None
    status: str = "Pendiente"
    custom_data: Dict[str, Any] = Field(default_factory=dict, alias="customData")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PersonPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    phone: str = ""
    address: str = ""
    ine: str = ""  # voter credential number

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name cannot be blank")
        return value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Responses ---
class CreateRecordResponse(BaseModel):
    """Server answer to POST /api/{collection}. The server sends `id`; `_id` is also accepted."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    message: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        # Mongo ObjectIds sometimes arrive as {"$oid": "..."}
        if isinstance(value, dict) and "$oid" in value:
            return value["$oid"]
        return str(value) if isinstance(value, int) else value


class RecordListPage(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    pages: int = 1
    page: int = 1
