"""
Import/export of research topics as a portable JSON document.

Document shape::

    {"topics": [{"id": ..., "name": ..., "locations": [...], "thresholds": [...]}]}

Imported topics are merged into the tracker: first by id, then by exact
name, otherwise created. Derived fields (``progressPercent``) never leave
the tracker.
"""

import json
import logging
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from models.common import clean_str
from tools.research_tracker import ResearchTracker

logger = logging.getLogger("ImportExport")

# Older exports nest some text under a "statblock" section.
_STATBLOCK_FIELDS = ("summary", "gatherInformation", "researchChecks", "locations")


class ImportSummary(BaseModel):
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    skipped: int = 0

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated)


def sanitize_topic(raw: Any) -> Any:
    """Import-ready copy of one topic, or None when it has no usable name."""
    if not isinstance(raw, dict):
        return None
    name = clean_str(raw.get("name"))
    if not name:
        return None

    topic = {key: value for key, value in raw.items() if key not in ("progressPercent", "statblock")}
    topic["name"] = name
    statblock = raw.get("statblock") if isinstance(raw.get("statblock"), dict) else {}
    for field in _STATBLOCK_FIELDS:
        if topic.get(field) is None and statblock.get(field) is not None:
            topic[field] = statblock[field]
    research = statblock.get("research")
    if topic.get("researchChecks") is None and isinstance(research, dict):
        topic["researchChecks"] = research.get("text")
    if topic.get("id") is not None:
        topic["id"] = str(topic["id"])
    return topic


def sanitize_payload(payload: Any) -> List[Dict[str, Any]]:
    """Topics from an import document; entries without a name are dropped."""
    if not isinstance(payload, dict) or not isinstance(payload.get("topics"), list):
        return []
    topics = []
    for raw in payload["topics"]:
        topic = sanitize_topic(raw)
        if topic is None:
            logger.warning("Skipping imported topic without a name.")
            continue
        topics.append(topic)
    return topics


async def merge_topic(tracker: ResearchTracker, topic_data: Dict[str, Any]) -> Dict[str, str]:
    existing = tracker.get_topic(topic_data["id"]) if topic_data.get("id") else None
    if existing is None:
        existing = next(
            (candidate for candidate in tracker.get_topics() if candidate.name == topic_data["name"]),
            None,
        )

    if existing is not None:
        await tracker.update_topic(existing.id, topic_data)
        return {"type": "updated", "id": existing.id}

    created = await tracker.create_topic(topic_data)
    return {"type": "created", "id": created.id}


async def import_topics(tracker: ResearchTracker, payload: Any) -> ImportSummary:
    """Merge every topic in ``payload`` into the tracker.

    Usage:
        summary = await import_topics(tracker, json.loads(path.read_text()))
        print(f"{len(summary.created)} created, {len(summary.updated)} updated")
    """
    raw_count = len(payload["topics"]) if isinstance(payload, dict) and isinstance(payload.get("topics"), list) else 0
    topics = sanitize_payload(payload)
    summary = ImportSummary(skipped=raw_count - len(topics))
    for topic in topics:
        result = await merge_topic(tracker, topic)
        if result["type"] == "created":
            summary.created.append(result["id"])
        else:
            summary.updated.append(result["id"])
    logger.info(
        f"Imported research topics: {len(summary.created)} created, "
        f"{len(summary.updated)} updated, {summary.skipped} skipped"
    )
    return summary


def build_export_payload(tracker: ResearchTracker) -> Dict[str, Any]:
    return {"topics": [topic.to_storage() for topic in tracker.get_topics()]}


def export_json(tracker: ResearchTracker) -> str:
    return json.dumps(build_export_payload(tracker), indent=2, ensure_ascii=False)
