"""
ResearchTracker — the authoritative store of research topics and the log.

Every mutation follows the same discipline: build the new record, run it
through the normalizer, swap it into memory, then await one save of the
whole state. Memory is complete before the save suspends, so readers never
see a half-applied change. If the save fails the error propagates and
memory keeps the attempted value; saving again re-serializes it.

Stale ids (a topic deleted in another window, say) are not errors: the
operation returns None/False and nothing changes.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from models.common import coerce_signed_int, new_id, now_ms
from models.research import (
    ResearchLocation,
    ResearchThreshold,
    ResearchTopic,
    needs_migration,
    normalize_topic,
)
from models.research_log import AdjustmentMetadata, ResearchLogEntry
from tools.notifier import Notifier
from tools.reveal_automation import (
    RevealAutomation,
    location_log_message,
    mark_location_revealed,
    mark_thresholds_revealed,
    threshold_log_message,
)
from tools.state_backends import StateBackend
from tools.tracker_errors import PersistenceError

logger = logging.getLogger("ResearchTracker")

MetadataLike = Union[AdjustmentMetadata, Dict[str, Any], None]


def _as_partial(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_unset=True)
    if isinstance(value, dict):
        return dict(value)
    logger.warning(f"Ignoring non-mapping update payload: {type(value).__name__}")
    return {}


def _aliased(model_cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite snake_case field names to their storage aliases."""
    aliases = {name: field.alias or name for name, field in model_cls.model_fields.items()}
    return {aliases.get(key, key): value for key, value in data.items()}


def _as_metadata(metadata: MetadataLike) -> AdjustmentMetadata:
    if isinstance(metadata, AdjustmentMetadata):
        return metadata
    if isinstance(metadata, dict):
        return AdjustmentMetadata.model_validate(metadata)
    return AdjustmentMetadata()


def _default_message(points: int) -> str:
    if points > 0:
        return f"Earned {points} RP"
    if points < 0:
        return f"Spent {abs(points)} RP"
    return "No point change"


class ResearchTracker:
    """In-memory research state with whole-blob persistence.

    Usage:
        tracker = ResearchTracker(JsonFileStateBackend("data/research_state.json"))
        await tracker.initialize()
        topic = await tracker.create_topic({"name": "The Sunken Archive", "target": 12})
        await tracker.adjust_points(topic.id, 2, {"reason": "Found the index"})
    """

    def __init__(self, backend: StateBackend, notifier: Optional[Notifier] = None):
        self.backend = backend
        self.reveals = RevealAutomation(notifier)
        self._topics: Dict[str, ResearchTopic] = {}
        self._log: List[ResearchLogEntry] = []
        self._initialized = False

    # ------------------------------------------------------------------
    # Loading & persistence
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load state from the backend, migrating legacy data once."""
        blob = await self.backend.load()
        if not isinstance(blob, dict):
            logger.warning("Stored state is not an object, starting empty.")
            blob = {}

        raw_topics = blob.get("topics") if isinstance(blob.get("topics"), list) else []
        self._topics = {}
        for raw in raw_topics:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed topic record: {raw!r}")
                continue
            topic = normalize_topic(raw)
            if topic.id in self._topics:
                logger.warning(f"Duplicate topic id '{topic.id}' in stored state, assigning a new id.")
                topic = normalize_topic({**topic.to_storage(), "id": new_id()})
            self._topics[topic.id] = topic

        raw_log = blob.get("log") if isinstance(blob.get("log"), list) else []
        self._log = []
        for raw in raw_log:
            try:
                self._log.append(ResearchLogEntry.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Dropping malformed log entry: {e}")
        self._sort_log()
        self._initialized = True
        logger.info(f"Research tracker loaded: {len(self._topics)} topics, {len(self._log)} log entries")

        if needs_migration(blob):
            logger.info("Legacy research data detected, re-saving in canonical form.")
            await self._save_state()

    def export_state(self) -> Dict[str, Any]:
        """The denormalized blob handed to the backend."""
        return {
            "topics": [topic.to_storage() for topic in self._topics.values()],
            "log": [entry.to_storage() for entry in self._log],
        }

    async def _save_state(self) -> None:
        if not self._initialized:
            logger.debug("Tracker not initialized, skipping save.")
            return
        try:
            await self.backend.save(self.export_state())
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Saving research state failed: {e}") from e

    async def _commit(
        self,
        topic_id: str,
        payload: Dict[str, Any],
        log_entry: Optional[ResearchLogEntry] = None,
        check_reveals: bool = False,
    ) -> ResearchTopic:
        previous = self._topics[topic_id].progress
        updated = normalize_topic(payload)
        self._topics[topic_id] = updated
        if log_entry is not None:
            self._append_log(log_entry)
        await self._save_state()
        if check_reveals or updated.progress != previous:
            await self._run_reveal_automation(topic_id)
        return updated

    # ------------------------------------------------------------------
    # Reads (always copies)
    # ------------------------------------------------------------------

    def get_topics(self) -> List[ResearchTopic]:
        return [topic.model_copy(deep=True) for topic in self._topics.values()]

    def get_topic(self, topic_id: str) -> Optional[ResearchTopic]:
        topic = self._topics.get(topic_id)
        return topic.model_copy(deep=True) if topic else None

    def get_location(self, topic_id: str, location_id: str) -> Optional[ResearchLocation]:
        topic = self._topics.get(topic_id)
        location = topic.get_location(location_id) if topic else None
        return location.model_copy(deep=True) if location else None

    def get_threshold(self, topic_id: str, threshold_id: str) -> Optional[ResearchThreshold]:
        topic = self._topics.get(topic_id)
        threshold = topic.get_threshold(threshold_id) if topic else None
        return threshold.model_copy(deep=True) if threshold else None

    def get_log(self, topic_id: Optional[str] = None) -> List[ResearchLogEntry]:
        return [
            entry.model_copy(deep=True) for entry in self._log
            if topic_id is None or entry.topic_id == topic_id
        ]

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def create_topic(self, data: Any = None) -> ResearchTopic:
        """Create a topic. Target defaults to 10 when not supplied."""
        payload = {"target": 10, "difficulty": "standard", **_aliased(ResearchTopic, _as_partial(data))}
        topic = normalize_topic(payload)
        if topic.id in self._topics:
            logger.warning(f"Topic id '{topic.id}' already exists, assigning a new id.")
            topic = normalize_topic({**topic.to_storage(), "id": new_id()})
        self._topics[topic.id] = topic
        await self._save_state()
        logger.info(f"Created research topic '{topic.name}' ({topic.id})")
        return self.get_topic(topic.id)

    async def update_topic(self, topic_id: str, partial: Any) -> Optional[ResearchTopic]:
        topic = self._topics.get(topic_id)
        if topic is None:
            return None
        changes = _aliased(ResearchTopic, _as_partial(partial))
        changes.pop("id", None)
        await self._commit(topic_id, {**topic.to_storage(), **changes})
        return self.get_topic(topic_id)

    async def delete_topic(self, topic_id: str) -> bool:
        """Remove a topic and every log entry that references it."""
        if topic_id not in self._topics:
            return False
        topic = self._topics.pop(topic_id)
        self._log = [entry for entry in self._log if entry.topic_id != topic_id]
        await self._save_state()
        logger.info(f"Deleted research topic '{topic.name}' ({topic_id})")
        return True

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def create_location(self, topic_id: str, data: Any = None) -> Optional[ResearchLocation]:
        topic = self._topics.get(topic_id)
        if topic is None:
            return None
        location = ResearchLocation.model_validate(_aliased(ResearchLocation, _as_partial(data)))
        if topic.get_location(location.id) is not None:
            location = ResearchLocation.model_validate({**location.model_dump(by_alias=True), "id": new_id()})
        payload = topic.to_storage()
        payload["locations"].append(location.model_dump(by_alias=True))
        await self._commit(topic_id, payload)
        return self.get_location(topic_id, location.id)

    async def update_location(
        self, topic_id: str, location_id: str, partial: Any
    ) -> Optional[ResearchLocation]:
        topic = self._topics.get(topic_id)
        location = topic.get_location(location_id) if topic else None
        if location is None:
            return None

        current = location.model_dump(by_alias=True)
        changes = _aliased(ResearchLocation, _as_partial(partial))
        changes.pop("id", None)
        # Legacy spellings in a partial replace the canonical key.
        for legacy, canonical in (("skills", "checks"), ("assignedActorIds", "assignedActors"),
                                  ("assignedActorUuids", "assignedActors")):
            if legacy in changes:
                changes.setdefault(canonical, changes.pop(legacy))

        if "checks" in changes:
            # The list is authoritative; the legacy mirrors are recomputed from it.
            current.pop("skill", None)
            current.pop("dc", None)
        elif "skill" in changes or "dc" in changes:
            primary = {
                "skill": changes.get("skill", current.get("skill")),
                "dc": changes.get("dc", current.get("dc")),
            }
            changes["checks"] = [primary] + current["checks"][1:]

        if changes.get("isRevealed") is True and not location.is_revealed and changes.get("revealedAt") is None:
            changes["revealedAt"] = now_ms()
        elif changes.get("isRevealed") is False and "revealedAt" not in changes:
            changes["revealedAt"] = None

        payload = topic.to_storage()
        payload["locations"] = [
            {**current, **changes} if entry["id"] == location_id else entry
            for entry in payload["locations"]
        ]
        await self._commit(topic_id, payload)
        return self.get_location(topic_id, location_id)

    async def delete_location(self, topic_id: str, location_id: str) -> bool:
        topic = self._topics.get(topic_id)
        if topic is None or topic.get_location(location_id) is None:
            return False
        payload = topic.to_storage()
        payload["locations"] = [entry for entry in payload["locations"] if entry["id"] != location_id]
        await self._commit(topic_id, payload)
        return True

    async def assign_actor(
        self, topic_id: str, location_id: str, uuid: str, name: Optional[str] = None
    ) -> Optional[ResearchLocation]:
        """Bind an actor to a location so automatic checks can find it."""
        location = self.get_location(topic_id, location_id)
        if location is None:
            return None
        actors = [actor.model_dump() for actor in location.assigned_actors]
        actors.append({"uuid": uuid, "name": name})
        return await self.update_location(topic_id, location_id, {"assignedActors": actors})

    async def unassign_actor(self, topic_id: str, location_id: str, uuid: str) -> Optional[ResearchLocation]:
        location = self.get_location(topic_id, location_id)
        if location is None:
            return None
        actors = [actor.model_dump() for actor in location.assigned_actors if actor.uuid != uuid]
        return await self.update_location(topic_id, location_id, {"assignedActors": actors})

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    async def create_threshold(self, topic_id: str, data: Any = None) -> Optional[ResearchThreshold]:
        topic = self._topics.get(topic_id)
        if topic is None:
            return None
        threshold = ResearchThreshold.model_validate(_aliased(ResearchThreshold, _as_partial(data)))
        if topic.get_threshold(threshold.id) is not None:
            threshold = ResearchThreshold.model_validate({**threshold.model_dump(by_alias=True), "id": new_id()})
        payload = topic.to_storage()
        payload["thresholds"].append(threshold.model_dump(by_alias=True))
        await self._commit(topic_id, payload)
        return self.get_threshold(topic_id, threshold.id)

    async def update_threshold(
        self, topic_id: str, threshold_id: str, partial: Any
    ) -> Optional[ResearchThreshold]:
        topic = self._topics.get(topic_id)
        if topic is None or topic.get_threshold(threshold_id) is None:
            return None
        changes = _aliased(ResearchThreshold, _as_partial(partial))
        changes.pop("id", None)
        payload = topic.to_storage()
        payload["thresholds"] = [
            {**entry, **changes} if entry["id"] == threshold_id else entry
            for entry in payload["thresholds"]
        ]
        await self._commit(topic_id, payload)
        return self.get_threshold(topic_id, threshold_id)

    async def delete_threshold(self, topic_id: str, threshold_id: str) -> bool:
        topic = self._topics.get(topic_id)
        if topic is None or topic.get_threshold(threshold_id) is None:
            return False
        payload = topic.to_storage()
        payload["thresholds"] = [entry for entry in payload["thresholds"] if entry["id"] != threshold_id]
        await self._commit(topic_id, payload)
        return True

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    async def adjust_points(
        self, topic_id: str, delta: Any, metadata: MetadataLike = None
    ) -> Optional[ResearchTopic]:
        """Add ``delta`` to a location-less topic. Progress never drops below 0."""
        topic = self._topics.get(topic_id)
        if topic is None:
            return None
        if topic.has_locations:
            logger.warning(
                f"Topic '{topic.name}' tracks points per location; "
                f"use adjust_location_points instead. No change made."
            )
            return None

        points = coerce_signed_int(delta)
        if points == 0:
            return self.get_topic(topic_id)

        meta = _as_metadata(metadata)
        payload = topic.to_storage()
        payload["progress"] = max(topic.progress + points, 0)
        entry = ResearchLogEntry(
            topic_id=topic_id,
            message=meta.reason or _default_message(points),
            points=points,
            actor_uuid=meta.actor_uuid,
            actor_name=meta.actor_name,
            roll=meta.roll,
        )
        await self._commit(topic_id, payload, entry, check_reveals=True)
        logger.info(f"'{topic.name}': {points:+d} RP -> {self._topics[topic_id].progress}/{topic.target}")
        return self.get_topic(topic_id)

    async def adjust_location_points(
        self, topic_id: str, location_id: str, delta: Any, metadata: MetadataLike = None
    ) -> Optional[ResearchLocation]:
        """Add ``delta`` to a location, clamped to [0, maxPoints] (or [0, inf))."""
        topic = self._topics.get(topic_id)
        location = topic.get_location(location_id) if topic else None
        if location is None:
            return None

        collected = max(location.collected + coerce_signed_int(delta), 0)
        if location.max_points > 0:
            collected = min(collected, location.max_points)
        net = collected - location.collected
        if net == 0:
            return self.get_location(topic_id, location_id)

        meta = _as_metadata(metadata)
        payload = topic.to_storage()
        for entry in payload["locations"]:
            if entry["id"] == location_id:
                entry["collected"] = collected
        log_entry = ResearchLogEntry(
            topic_id=topic_id,
            message=meta.reason or f"{location.name}: {_default_message(net)}",
            points=net,
            actor_uuid=meta.actor_uuid,
            actor_name=meta.actor_name,
            roll=meta.roll,
        )
        await self._commit(topic_id, payload, log_entry, check_reveals=True)
        logger.info(f"'{topic.name}' / '{location.name}': {net:+d} RP -> {collected}")
        return self.get_location(topic_id, location_id)

    # ------------------------------------------------------------------
    # Reveals
    # ------------------------------------------------------------------

    async def _run_reveal_automation(self, topic_id: str) -> List[str]:
        """Reveal every threshold the topic's progress has reached. Returns their ids."""
        topic = self._topics.get(topic_id)
        if topic is None:
            return []
        unlocked = self.reveals.collect_unlocked(topic)
        if not unlocked:
            return []

        stamp = now_ms()
        ids = [threshold.id for threshold in unlocked]
        self._topics[topic_id] = normalize_topic(mark_thresholds_revealed(topic, ids, stamp))
        for threshold in unlocked:
            self._append_log(ResearchLogEntry(
                topic_id=topic_id, message=threshold_log_message(threshold), timestamp=stamp,
            ))
        await self._save_state()

        snapshot = self._topics[topic_id]
        for threshold_id in ids:
            await self.reveals.announce_threshold(snapshot, snapshot.get_threshold(threshold_id))
        return ids

    async def send_threshold_reveal(self, topic_id: str, threshold_id: str, resend: bool = False) -> bool:
        """Reveal a threshold once. ``resend`` re-announces without touching revealedAt.

        Returns True when an announcement went out.
        """
        topic = self._topics.get(topic_id)
        threshold = topic.get_threshold(threshold_id) if topic else None
        if threshold is None:
            return False

        if topic.is_threshold_revealed(threshold_id):
            if not resend:
                logger.debug(f"Threshold {threshold_id} already revealed; not resending.")
                return False
            await self.reveals.announce_threshold(self.get_topic(topic_id), threshold.model_copy(deep=True))
            return True

        stamp = now_ms()
        entry = ResearchLogEntry(topic_id=topic_id, message=threshold_log_message(threshold), timestamp=stamp)
        await self._commit(topic_id, mark_thresholds_revealed(topic, [threshold_id], stamp), entry)
        snapshot = self.get_topic(topic_id)
        await self.reveals.announce_threshold(snapshot, snapshot.get_threshold(threshold_id))
        return True

    async def send_location_reveal(self, topic_id: str, location_id: str, resend: bool = False) -> bool:
        """Reveal a location to players once; ``resend`` re-announces it."""
        topic = self._topics.get(topic_id)
        location = topic.get_location(location_id) if topic else None
        if location is None:
            return False

        if location.is_revealed:
            if not resend:
                logger.debug(f"Location {location_id} already revealed; not resending.")
                return False
            await self.reveals.announce_location(self.get_topic(topic_id), location.model_copy(deep=True))
            return True

        stamp = now_ms()
        entry = ResearchLogEntry(topic_id=topic_id, message=location_log_message(location), timestamp=stamp)
        await self._commit(topic_id, mark_location_revealed(topic, location_id, stamp), entry)
        snapshot = self.get_topic(topic_id)
        await self.reveals.announce_location(snapshot, snapshot.get_location(location_id))
        return True

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def _sort_log(self) -> None:
        # list.sort is stable: equal timestamps keep insertion order.
        self._log.sort(key=lambda entry: entry.timestamp)

    def _append_log(self, entry: ResearchLogEntry) -> None:
        self._log.append(entry)
        self._sort_log()

    async def record_log(self, entry: Any) -> ResearchLogEntry:
        """Append a narrative entry to the log and persist."""
        data = entry.model_dump(by_alias=True) if isinstance(entry, BaseModel) else _as_partial(entry)
        log_entry = ResearchLogEntry.model_validate(data)
        self._append_log(log_entry)
        await self._save_state()
        return log_entry.model_copy(deep=True)
