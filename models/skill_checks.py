"""
Skill-check schemas — the inbound event the outcome matcher reacts to,
and the result it reports back.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from models.common import clean_str, coerce_optional_positive_int


class DegreeOfSuccess(str, Enum):
    CRITICAL_SUCCESS = "criticalSuccess"
    SUCCESS = "success"
    FAILURE = "failure"
    CRITICAL_FAILURE = "criticalFailure"

    @classmethod
    def parse(cls, value: Any) -> Optional["DegreeOfSuccess"]:
        """Accept criticalSuccess / critical-success / CRITICAL SUCCESS / ..."""
        if isinstance(value, DegreeOfSuccess):
            return value
        if value is None:
            return None
        key = "".join(ch for ch in str(value).lower() if ch.isalnum())
        return _DEGREE_KEYS.get(key)

    @property
    def label(self) -> str:
        return _DEGREE_LABELS[self]


_DEGREE_KEYS = {
    "criticalsuccess": DegreeOfSuccess.CRITICAL_SUCCESS,
    "success": DegreeOfSuccess.SUCCESS,
    "failure": DegreeOfSuccess.FAILURE,
    "criticalfailure": DegreeOfSuccess.CRITICAL_FAILURE,
}

_DEGREE_LABELS = {
    DegreeOfSuccess.CRITICAL_SUCCESS: "Critical Success",
    DegreeOfSuccess.SUCCESS: "Success",
    DegreeOfSuccess.FAILURE: "Failure",
    DegreeOfSuccess.CRITICAL_FAILURE: "Critical Failure",
}

# Plain failure is deliberately a no-op; only a critical failure costs a point.
OUTCOME_POINTS: Dict[DegreeOfSuccess, int] = {
    DegreeOfSuccess.CRITICAL_SUCCESS: 2,
    DegreeOfSuccess.SUCCESS: 1,
    DegreeOfSuccess.FAILURE: 0,
    DegreeOfSuccess.CRITICAL_FAILURE: -1,
}


def to_title_case(value: str) -> str:
    """Title-case a slug: "crafting-lore" becomes "Crafting Lore"."""
    words = str(value or "").replace("-", " ").replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


class ActorIdentity(BaseModel):
    """The actor who rolled the check, as much as the host told us."""

    id: str = ""
    uuid: Optional[str] = None
    name: Optional[str] = None
    kind: str = ""
    is_player_controlled: bool = False
    alias_uuids: List[str] = Field(default_factory=list)

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v):
        return clean_str(v).lower()

    @property
    def is_player_character(self) -> bool:
        return self.kind == "character" and self.is_player_controlled

    @property
    def candidate_uuids(self) -> Set[str]:
        """Every uuid an assignment might have recorded for this actor."""
        uuids = {u for u in self.alias_uuids if u}
        if self.uuid:
            uuids.add(self.uuid)
        if self.id:
            uuids.add(f"Actor.{self.id}")
        return uuids

    @property
    def primary_uuid(self) -> Optional[str]:
        if self.uuid:
            return self.uuid
        return f"Actor.{self.id}" if self.id else None


class SkillCheckEvent(BaseModel):
    """A finished skill check, normalized by the outcome source."""

    id: str
    skill_slug: str = ""
    skill_label: Optional[str] = None
    outcome_degree: Optional[DegreeOfSuccess] = None
    dc: Optional[int] = None
    actor: ActorIdentity = Field(default_factory=ActorIdentity)
    roll_payload: Optional[Dict[str, Any]] = None

    @field_validator("skill_slug", mode="before")
    @classmethod
    def validate_slug(cls, v):
        return clean_str(v).lower()

    @field_validator("outcome_degree", mode="before")
    @classmethod
    def validate_degree(cls, v):
        return DegreeOfSuccess.parse(v)

    @field_validator("dc", mode="before")
    @classmethod
    def validate_dc(cls, v):
        return coerce_optional_positive_int(v)

    @property
    def points(self) -> int:
        if self.outcome_degree is None:
            return 0
        return OUTCOME_POINTS[self.outcome_degree]

    def build_reason(self) -> str:
        skill = self.skill_label or to_title_case(self.skill_slug)
        outcome = self.outcome_degree.label if self.outcome_degree else "Unknown"
        return f"Automatic: {skill} check ({outcome})"


class AutoUpdateResult(BaseModel):
    """What the matcher did with one event."""

    status: str  # applied | abstained | ignored | duplicate
    reason: str = ""
    topic_id: Optional[str] = None
    location_id: Optional[str] = None
    points: int = 0

    @property
    def applied(self) -> bool:
        return self.status == "applied"
