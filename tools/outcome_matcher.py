"""
OutcomeMatcher — turns finished skill checks into research points.

Given a normalized SkillCheckEvent, the matcher works out which single
research target the roll was for and applies the outcome's points there.
It never guesses: when more than one target fits at the deciding tier it
abstains and logs a warning instead.

Precedence:
  1. Locations the rolling actor is assigned to.
  2. Open locations (no assignments at all).
  3. Topics without locations, matched on the topic's own skill.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

from models.research import ResearchLocation, ResearchTopic
from models.research_log import AdjustmentMetadata
from models.skill_checks import AutoUpdateResult, SkillCheckEvent
from tools.research_tracker import ResearchTracker

logger = logging.getLogger("OutcomeMatcher")


@dataclass
class _Target:
    topic_id: str
    location_id: Optional[str] = None


def location_matches(topic: ResearchTopic, location: ResearchLocation, event: SkillCheckEvent) -> bool:
    """True when any of the location's checks accepts the event's skill and DC.

    A location with no checks at all falls back to the topic's skill, DC-free.
    """
    if location.checks:
        return any(check.matches(event.skill_slug, event.dc) for check in location.checks)
    return bool(topic.skill) and topic.skill.lower() == event.skill_slug


class OutcomeMatcher:
    """Applies automatic research points for skill checks.

    Usage:
        matcher = OutcomeMatcher(tracker)
        result = await matcher.handle(event)
        if result.applied:
            ...
    """

    def __init__(self, tracker: ResearchTracker, max_remembered: int = 5000):
        self.tracker = tracker
        self.max_remembered = max_remembered
        self._processed: "OrderedDict[str, None]" = OrderedDict()
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _handling_lock(self) -> asyncio.Lock:
        # An asyncio.Lock binds to the first loop that waits on it.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _remember(self, event_id: str) -> bool:
        """Record an event id. False if it was already seen."""
        if event_id in self._processed:
            return False
        self._processed[event_id] = None
        while len(self._processed) > self.max_remembered:
            self._processed.popitem(last=False)
        return True

    async def handle(self, event: SkillCheckEvent) -> AutoUpdateResult:
        async with self._handling_lock():
            if not self._remember(event.id):
                logger.debug(f"Skill check {event.id} already processed.")
                return AutoUpdateResult(status="duplicate", reason="already processed")
            return await self._handle(event)

    async def _handle(self, event: SkillCheckEvent) -> AutoUpdateResult:
        if event.outcome_degree is None:
            return self._abstain("unknown outcome", status="ignored")
        points = event.points
        if points == 0:
            return self._abstain("outcome awards no points", status="ignored")
        if not event.skill_slug:
            return self._abstain("no skill on the check", status="ignored")
        if not event.actor.is_player_character:
            return self._abstain("actor is not a player character", status="ignored")

        target = self.find_target(event)
        if target is None:
            return AutoUpdateResult(status="abstained", reason="no single matching target")

        metadata = AdjustmentMetadata(
            actor_uuid=event.actor.primary_uuid,
            actor_name=event.actor.name,
            reason=event.build_reason(),
            roll=event.roll_payload,
        )
        if target.location_id:
            await self.tracker.adjust_location_points(target.topic_id, target.location_id, points, metadata)
        else:
            await self.tracker.adjust_points(target.topic_id, points, metadata)

        logger.info(
            f"{metadata.reason}: {points:+d} RP for {event.actor.name or event.actor.primary_uuid} "
            f"on topic {target.topic_id}" + (f", location {target.location_id}" if target.location_id else "")
        )
        return AutoUpdateResult(
            status="applied",
            reason=metadata.reason,
            topic_id=target.topic_id,
            location_id=target.location_id,
            points=points,
        )

    @staticmethod
    def _abstain(reason: str, status: str = "abstained") -> AutoUpdateResult:
        logger.debug(f"Skipping skill check: {reason}")
        return AutoUpdateResult(status=status, reason=reason)

    def find_target(self, event: SkillCheckEvent) -> Optional[_Target]:
        """Pick the single target for ``event`` or None."""
        candidates = event.actor.candidate_uuids
        assigned: List[_Target] = []
        open_locations: List[_Target] = []
        topic_level: List[_Target] = []

        for topic in self.tracker.get_topics():
            if not topic.has_locations:
                if topic.skill and topic.skill.lower() == event.skill_slug:
                    topic_level.append(_Target(topic.id))
                continue
            for location in topic.locations:
                if not location_matches(topic, location, event):
                    continue
                if location.is_assigned(candidates):
                    assigned.append(_Target(topic.id, location.id))
                elif not location.has_assignments:
                    open_locations.append(_Target(topic.id, location.id))

        tiers = (
            (assigned, "Multiple assigned research locations matched the same skill check."),
            (open_locations, "Multiple research locations matched the same skill check. "
                             "Assign party members to locations to disambiguate."),
            (topic_level, "Multiple research topics matched the same skill check."),
        )
        for matches, warning in tiers:
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                logger.warning(f"{warning} Skipping automatic adjustment for '{event.skill_slug}'.")
                return None
        return None
