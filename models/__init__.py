"""
Pydantic v2 data models — the contract for all research state.

Every record the tracker stores passes through these models first.
Loose input is coerced into canonical shape rather than rejected.
"""

from models.research import (
    LocationCheck,
    AssignedActor,
    ResearchLocation,
    ResearchThreshold,
    ResearchTopic,
    normalize_topic,
    needs_migration,
)
from models.research_log import ResearchLogEntry, AdjustmentMetadata
from models.skill_checks import (
    DegreeOfSuccess,
    OUTCOME_POINTS,
    ActorIdentity,
    SkillCheckEvent,
    AutoUpdateResult,
)

__all__ = [
    "LocationCheck",
    "AssignedActor",
    "ResearchLocation",
    "ResearchThreshold",
    "ResearchTopic",
    "normalize_topic",
    "needs_migration",
    "ResearchLogEntry",
    "AdjustmentMetadata",
    "DegreeOfSuccess",
    "OUTCOME_POINTS",
    "ActorIdentity",
    "SkillCheckEvent",
    "AutoUpdateResult",
]
