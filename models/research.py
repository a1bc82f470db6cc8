"""
Research schemas — topics, their locations, and unlock thresholds.

Every record the tracker holds passes through these models. Input is
coerced rather than rejected: missing ids are generated, numbers are
clamped, legacy location shapes are migrated. Validating an already
normalized record yields the same record, so normalization can run on
every read and write.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from models.common import (
    clean_str,
    coerce_int,
    coerce_optional_int,
    coerce_optional_positive_int,
    new_id,
    pick,
    without,
)

logger = logging.getLogger("ResearchModels")

DEFAULT_TOPIC_NAME = "Research Topic"
DEFAULT_LOCATION_NAME = "Location"


def _coerce_id(value: Any) -> str:
    if value is None:
        return new_id()
    text = str(value).strip()
    return text or new_id()


def _as_entries(value: Any) -> List[Any]:
    """Accept a bare list or the ``{"entries": [...]}`` interchange wrapper."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict) and isinstance(value.get("entries"), list):
        return value["entries"]
    return []


def _as_mapping(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, dict):
        return value
    return None


def _mappings(value: Any) -> List[Dict[str, Any]]:
    """Child records as plain dicts; non-mapping entries are dropped."""
    result = []
    for entry in _as_entries(value):
        mapping = _as_mapping(entry)
        if mapping is not None:
            result.append(mapping)
    return result


# ---------------------------------------------------------------------------
# Location checks
# ---------------------------------------------------------------------------

def _check_from_raw(entry: Any) -> Optional[Dict[str, Any]]:
    if isinstance(entry, LocationCheck):
        entry = entry.model_dump()
    if isinstance(entry, str):
        skill = entry.strip()
        return {"skill": skill, "dc": None} if skill else None
    if not isinstance(entry, dict):
        return None
    skill = clean_str(pick(entry, "skill", "slug", "name", default=""))
    dc = coerce_optional_positive_int(pick(entry, "dc", "DC"))
    if not skill and dc is None:
        return None
    return {"skill": skill, "dc": dc}


def sanitize_checks(value: Any) -> List[Dict[str, Any]]:
    """Clean a raw checks list; drops empty entries and exact duplicates."""
    checks = []
    seen = set()
    for entry in _as_entries(value):
        check = _check_from_raw(entry)
        if check is None:
            continue
        key = (check["skill"].lower(), check["dc"])
        if key in seen:
            continue
        seen.add(key)
        checks.append(check)
    return checks


class LocationCheck(BaseModel):
    """One skill/DC combination that gates a location."""

    skill: str = ""
    dc: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def coerce_entry(cls, data):
        check = _check_from_raw(data)
        return check if check is not None else {}

    def matches(self, skill_slug: str, dc: Optional[int]) -> bool:
        if not self.skill or self.skill.lower() != skill_slug:
            return False
        return self.dc is None or self.dc == dc


# ---------------------------------------------------------------------------
# Assigned actors
# ---------------------------------------------------------------------------

def sanitize_assigned_actors(value: Any) -> List[Dict[str, Any]]:
    """Deduplicate by uuid, keeping first position and the richest name."""
    if isinstance(value, (str, dict)) and not (isinstance(value, dict) and "entries" in value):
        raw = [value]
    else:
        raw = _as_entries(value)

    entries: Dict[str, Dict[str, Any]] = {}
    for entry in raw:
        if isinstance(entry, AssignedActor):
            entry = entry.model_dump()
        uuid, name = "", ""
        if isinstance(entry, str):
            uuid = entry.strip()
        elif isinstance(entry, dict):
            uuid = clean_str(entry.get("uuid")) or clean_str(entry.get("id"))
            name = clean_str(entry.get("name"))
        if not uuid:
            continue
        existing = entries.get(uuid)
        if existing is None:
            entries[uuid] = {"uuid": uuid, "name": name or None}
        elif name and not existing["name"]:
            existing["name"] = name
    return list(entries.values())


class AssignedActor(BaseModel):
    """An actor pre-assigned to a location for automatic matching."""

    uuid: str
    name: Optional[str] = None


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

_LOCATION_KEYS = (
    "id", "name", "maxPoints", "max_points", "collected", "checks", "skills",
    "skill", "dc", "description", "assignedActors", "assigned_actors",
    "assignedActorIds", "assignedActorUuids", "isRevealed", "is_revealed",
    "revealedAt", "revealed_at",
)


class ResearchLocation(BaseModel):
    """A sub-target of a topic with its own point budget.

    ``max_points == 0`` means the location has no cap. ``checks[0]`` is the
    primary check and is mirrored onto the legacy ``skill``/``dc`` fields.
    """

    id: str = Field(default_factory=new_id)
    name: str = DEFAULT_LOCATION_NAME
    max_points: int = Field(default=0, ge=0, alias="maxPoints")
    collected: int = Field(default=0, ge=0)
    checks: List[LocationCheck] = Field(default_factory=list)
    skill: Optional[str] = None
    dc: Optional[int] = None
    description: str = ""
    assigned_actors: List[AssignedActor] = Field(default_factory=list, alias="assignedActors")
    is_revealed: bool = Field(default=False, alias="isRevealed")
    revealed_at: Optional[int] = Field(default=None, alias="revealedAt")

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_raw(cls, data):
        data = _as_mapping(data) or {}

        legacy_skill = clean_str(data.get("skill"))
        legacy_dc = coerce_optional_positive_int(data.get("dc"))
        checks = sanitize_checks(pick(data, "checks", "skills"))
        if not checks and (legacy_skill or legacy_dc is not None):
            checks = [{"skill": legacy_skill, "dc": legacy_dc}]
        primary = checks[0] if checks else None

        max_points = coerce_int(pick(data, "maxPoints", "max_points"))
        collected = coerce_int(data.get("collected"))
        if max_points > 0:
            collected = min(collected, max_points)

        revealed_at = coerce_optional_int(pick(data, "revealedAt", "revealed_at"))
        is_revealed = pick(data, "isRevealed", "is_revealed")
        if not isinstance(is_revealed, bool):
            is_revealed = revealed_at is not None

        return {
            **without(data, _LOCATION_KEYS),
            "id": _coerce_id(data.get("id")),
            "name": clean_str(data.get("name")) or DEFAULT_LOCATION_NAME,
            "maxPoints": max_points,
            "collected": collected,
            "checks": checks,
            "skill": (primary["skill"] or None) if primary else None,
            "dc": primary["dc"] if primary else None,
            "description": clean_str(data.get("description")),
            "assignedActors": sanitize_assigned_actors(
                pick(data, "assignedActors", "assigned_actors", "assignedActorIds", "assignedActorUuids")
            ),
            "isRevealed": is_revealed,
            "revealedAt": revealed_at,
        }

    @property
    def primary_check(self) -> Optional[LocationCheck]:
        """The first check entry, the one legacy readers see as skill/dc."""
        return self.checks[0] if self.checks else None

    @property
    def is_unlimited(self) -> bool:
        return self.max_points == 0

    @property
    def has_assignments(self) -> bool:
        return len(self.assigned_actors) > 0

    def is_assigned(self, candidate_uuids) -> bool:
        return any(actor.uuid in candidate_uuids for actor in self.assigned_actors)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

_THRESHOLD_KEYS = (
    "id", "points", "gmText", "gm_text", "playerText", "player_text",
    "revealedAt", "revealed_at",
)


class ResearchThreshold(BaseModel):
    """A progress milestone that unlocks narrative text once reached."""

    id: str = Field(default_factory=new_id)
    points: int = Field(default=0, ge=0)
    gm_text: str = Field(default="", alias="gmText")
    player_text: str = Field(default="", alias="playerText")
    revealed_at: Optional[int] = Field(default=None, alias="revealedAt")

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_raw(cls, data):
        data = _as_mapping(data) or {}
        gm_text = pick(data, "gmText", "gm_text")
        player_text = pick(data, "playerText", "player_text")
        return {
            **without(data, _THRESHOLD_KEYS),
            "id": _coerce_id(data.get("id")),
            "points": coerce_int(data.get("points")),
            "gmText": gm_text if isinstance(gm_text, str) else "",
            "playerText": player_text if isinstance(player_text, str) else "",
            "revealedAt": coerce_optional_int(pick(data, "revealedAt", "revealed_at")),
        }


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------

_TOPIC_KEYS = (
    "id", "name", "progress", "target", "skill", "difficulty", "level",
    "summary", "gatherInformation", "gather_information", "researchChecks",
    "research_checks", "locations", "thresholds", "revealedThresholdIds",
    "revealed_threshold_ids", "progressPercent", "progress_percent",
)


class ResearchTopic(BaseModel):
    """A top-level research subject.

    When a topic has locations, ``progress`` and ``target`` are derived from
    them and anything supplied directly is overwritten.
    """

    id: str = Field(default_factory=new_id)
    name: str = DEFAULT_TOPIC_NAME
    progress: int = Field(default=0, ge=0)
    target: int = Field(default=0, ge=0)
    skill: Optional[str] = None
    difficulty: str = "standard"
    level: Optional[int] = None
    summary: str = ""
    gather_information: str = Field(default="", alias="gatherInformation")
    research_checks: str = Field(default="", alias="researchChecks")
    locations: List[ResearchLocation] = Field(default_factory=list)
    thresholds: List[ResearchThreshold] = Field(default_factory=list)
    revealed_threshold_ids: List[str] = Field(default_factory=list, alias="revealedThresholdIds")
    progress_percent: float = Field(default=0.0, alias="progressPercent")

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_raw(cls, data):
        data = _as_mapping(data) or {}
        revealed = pick(data, "revealedThresholdIds", "revealed_threshold_ids")
        return {
            **without(data, _TOPIC_KEYS),
            "id": _coerce_id(data.get("id")),
            "name": clean_str(data.get("name")) or DEFAULT_TOPIC_NAME,
            "progress": coerce_int(data.get("progress")),
            "target": coerce_int(data.get("target")),
            "skill": clean_str(data.get("skill")) or None,
            "difficulty": clean_str(data.get("difficulty")) or "standard",
            "level": coerce_optional_int(data.get("level")),
            "summary": clean_str(data.get("summary")),
            "gatherInformation": clean_str(pick(data, "gatherInformation", "gather_information")),
            "researchChecks": clean_str(pick(data, "researchChecks", "research_checks")),
            "locations": _mappings(data.get("locations")),
            "thresholds": _mappings(data.get("thresholds")),
            "revealedThresholdIds": [
                str(entry).strip() for entry in (revealed if isinstance(revealed, list) else [])
                if entry is not None and str(entry).strip()
            ],
        }

    @model_validator(mode="after")
    def derive_fields(self):
        # Duplicate child ids would make update/delete ambiguous.
        seen_locations = set()
        for location in self.locations:
            if location.id in seen_locations:
                location.id = new_id()
            seen_locations.add(location.id)
        seen_thresholds = set()
        for threshold in self.thresholds:
            if threshold.id in seen_thresholds:
                threshold.id = new_id()
            seen_thresholds.add(threshold.id)

        # sorted() is stable, so equal points keep insertion order.
        self.thresholds = sorted(self.thresholds, key=lambda t: t.points)

        revealed: List[str] = []
        for threshold_id in self.revealed_threshold_ids:
            if threshold_id in seen_thresholds and threshold_id not in revealed:
                revealed.append(threshold_id)
        for threshold in self.thresholds:
            if threshold.revealed_at is not None and threshold.id not in revealed:
                revealed.append(threshold.id)
        self.revealed_threshold_ids = revealed

        if self.locations:
            self.target = sum(location.max_points for location in self.locations)
            self.progress = min(sum(location.collected for location in self.locations), self.target)

        percent = 0.0
        if self.target > 0:
            percent = min(max(self.progress / self.target * 100, 0.0), 100.0)
        self.progress_percent = round(percent, 2)
        return self

    @property
    def has_locations(self) -> bool:
        return len(self.locations) > 0

    def get_location(self, location_id: str) -> Optional[ResearchLocation]:
        for location in self.locations:
            if location.id == location_id:
                return location
        return None

    def get_threshold(self, threshold_id: str) -> Optional[ResearchThreshold]:
        for threshold in self.thresholds:
            if threshold.id == threshold_id:
                return threshold
        return None

    def is_threshold_revealed(self, threshold_id: str) -> bool:
        return threshold_id in self.revealed_threshold_ids

    def to_storage(self) -> Dict[str, Any]:
        """Serializable form with derived fields stripped."""
        return self.model_dump(by_alias=True, exclude={"progress_percent"})


def normalize_topic(raw: Any) -> ResearchTopic:
    """Coerce any input into a canonical ResearchTopic. Never raises."""
    data = _as_mapping(raw) or {}
    try:
        return ResearchTopic.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Topic could not be normalized, substituting defaults: {e}")
        return ResearchTopic.model_validate({"id": data.get("id"), "name": data.get("name")})


def needs_migration(blob: Any) -> bool:
    """True when persisted data still uses the legacy topic/location shape.

    Legacy locations carry a bare ``skill``/``dc`` and no ``checks`` list or
    explicit ``isRevealed`` flag; legacy topics have no ``revealedThresholdIds``.
    """
    if not isinstance(blob, dict) or not isinstance(blob.get("topics"), list):
        return False
    for topic in blob["topics"]:
        if not isinstance(topic, dict):
            continue
        if not isinstance(topic.get("revealedThresholdIds"), list):
            return True
        for location in _as_entries(topic.get("locations")):
            if not isinstance(location, dict):
                continue
            if not isinstance(location.get("checks"), list):
                return True
            if not isinstance(location.get("isRevealed"), bool):
                return True
    return False
