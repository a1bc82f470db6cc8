"""
Research log schemas — the append-only journal of point changes and reveals.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from models.common import (
    clean_str,
    coerce_optional_int,
    coerce_optional_signed_int,
    new_id,
    now_ms,
)


class ResearchLogEntry(BaseModel):
    """Append-only log entry. Never modified after creation."""

    id: str = Field(default_factory=new_id)
    topic_id: str = Field(default="", alias="topicId")
    message: str = ""
    timestamp: int = Field(default_factory=now_ms)
    points: Optional[int] = None
    actor_uuid: Optional[str] = Field(default=None, alias="actorUuid")
    actor_name: Optional[str] = Field(default=None, alias="actorName")
    roll: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v):
        text = str(v).strip() if v is not None else ""
        return text or new_id()

    @field_validator("topic_id", "message", mode="before")
    @classmethod
    def validate_text(cls, v):
        return str(v) if v is not None else ""

    @field_validator("timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, v):
        stamp = coerce_optional_int(v)
        return stamp if stamp is not None else now_ms()

    @field_validator("points", mode="before")
    @classmethod
    def validate_points(cls, v):
        return coerce_optional_signed_int(v)

    @field_validator("actor_uuid", "actor_name", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return clean_str(v) or None

    @field_validator("roll", mode="before")
    @classmethod
    def validate_roll(cls, v):
        return v if isinstance(v, dict) else None

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AdjustmentMetadata(BaseModel):
    """Who/why/what-roll context attached to a point adjustment."""

    actor_uuid: Optional[str] = Field(default=None, alias="actorUuid")
    actor_name: Optional[str] = Field(default=None, alias="actorName")
    reason: Optional[str] = None
    roll: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("actor_uuid", "actor_name", "reason", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return clean_str(v) or None

    @field_validator("roll", mode="before")
    @classmethod
    def validate_roll(cls, v):
        return v if isinstance(v, dict) else None
