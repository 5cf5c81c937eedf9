"""
DermTrack - Data models
Users, patients, lesion images and the structured results of the inference service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on disk and over HTTP"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Resultados de inferencia
# ============================================================================

class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def from_label(cls, label) -> "Confidence":
        if isinstance(label, cls):
            return label
        normalized = str(label).strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        return cls.UNRECOGNIZED


class AnalysisResult(CamelModel):
    condition_name: str
    confidence: Confidence
    description: str
    recommendations: List[str]
    # Etiqueta tal cual la devolvió el modelo, p.ej. "Moderate" -> Unrecognized
    confidence_label: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _keep_confidence_label(cls, data):
        if isinstance(data, dict) and "confidenceLabel" not in data and "confidence_label" not in data:
            raw = data.get("confidence")
            label = raw.value if isinstance(raw, Confidence) else raw
            if label is not None:
                data = {**data, "confidence_label": str(label)}
        return data

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value):
        return Confidence.from_label(value)


class ComparisonResult(CamelModel):
    change_summary: str
    key_observations: List[str]
    recommendation: str
    updated_condition_assessment: str
    post_comparison_condition: str


# ============================================================================
# Imágenes
# ============================================================================

class BinaryHandle(BaseModel):
    """Raw image bytes held in memory for the lifetime of the process"""

    name: str
    mime_type: str
    data: bytes


class LesionImage(CamelModel):
    id: str
    image_data_url: str
    # Never serialized: only images uploaded in this process carry one
    binary_handle: Optional[BinaryHandle] = Field(default=None, exclude=True)
    analysis_result: Optional[AnalysisResult] = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class LiveHandle(BaseModel):
    """Image uploaded in this session; its bytes are still in memory"""

    kind: Literal["live"] = "live"
    handle: BinaryHandle


class EncodedOnly(BaseModel):
    """Image reloaded from storage; only the data URL is available"""

    kind: Literal["encoded"] = "encoded"
    image_id: str
    data_url: str


ImageSource = Union[LiveHandle, EncodedOnly]


# ============================================================================
# Pacientes y usuarios
# ============================================================================

Gender = Literal["Male", "Female", "Other", "Prefer not to say"]


class PatientCreate(CamelModel):
    name: str
    dob: str
    patient_id: Optional[str] = None
    gender: Optional[Gender] = None
    blood_type: Optional[str] = None
    existing_conditions: Optional[str] = None

    @field_validator("name", "dob")
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("patient_id", "gender", "blood_type", "existing_conditions", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Patient(PatientCreate):
    id: str
    lesion_images: List[LesionImage] = []


class User(CamelModel):
    id: str
    name: str
    email: str
    password: str  # Texto plano: solo controla la sesión
