"""
RevealAutomation — one-way reveals of thresholds and locations.

A threshold goes Unrevealed -> Revealed once a topic's progress reaches
its points, and never back. Several thresholds can unlock from a single
adjustment; they are all marked in one pass with one shared timestamp.
Locations are only revealed on request.

This module decides *what* unlocks and *what gets announced*. The tracker
owns the state, the log and the save in between.
"""

import html
import logging
from typing import Any, Dict, Iterable, List, Optional

from models.research import ResearchLocation, ResearchThreshold, ResearchTopic
from tools.notifier import AUDIENCE_GM, AUDIENCE_PLAYER, LoggingNotifier, Notifier

logger = logging.getLogger("RevealAutomation")


def mark_thresholds_revealed(
    topic: ResearchTopic, threshold_ids: Iterable[str], stamp: int
) -> Dict[str, Any]:
    """Return the topic's storage payload with the given thresholds revealed.

    Thresholds that already carry a ``revealedAt`` keep it.
    """
    wanted = [tid for tid in threshold_ids if topic.get_threshold(tid) is not None]
    payload = topic.to_storage()
    for threshold in payload["thresholds"]:
        if threshold["id"] in wanted and threshold.get("revealedAt") is None:
            threshold["revealedAt"] = stamp
    revealed = list(payload["revealedThresholdIds"])
    for tid in wanted:
        if tid not in revealed:
            revealed.append(tid)
    payload["revealedThresholdIds"] = revealed
    return payload


def mark_location_revealed(topic: ResearchTopic, location_id: str, stamp: int) -> Dict[str, Any]:
    payload = topic.to_storage()
    for location in payload["locations"]:
        if location["id"] == location_id:
            location["isRevealed"] = True
            if location.get("revealedAt") is None:
                location["revealedAt"] = stamp
    return payload


def threshold_log_message(threshold: ResearchThreshold) -> str:
    return f"Threshold reached: {threshold.points} RP"


def location_log_message(location: ResearchLocation) -> str:
    return f"Location revealed: {location.name}"


class RevealAutomation:
    """Finds newly unlocked thresholds and announces reveals to both audiences."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()

    @staticmethod
    def collect_unlocked(topic: ResearchTopic) -> List[ResearchThreshold]:
        """Thresholds reached by current progress and not yet revealed, in order."""
        return [
            threshold for threshold in topic.thresholds
            if threshold.points <= topic.progress
            and not topic.is_threshold_revealed(threshold.id)
        ]

    async def announce_threshold(self, topic: ResearchTopic, threshold: ResearchThreshold) -> None:
        title = f"{topic.name}: {threshold.points} RP"
        player_body = threshold.player_text or (
            f"<p>New insight into <strong>{html.escape(topic.name)}</strong>.</p>"
        )
        gm_body = threshold.gm_text or player_body
        logger.info(f"Revealing threshold {threshold.points} RP on '{topic.name}'")
        await self.notifier.notify(AUDIENCE_PLAYER, title, player_body)
        await self.notifier.notify(AUDIENCE_GM, title, gm_body)

    async def announce_location(self, topic: ResearchTopic, location: ResearchLocation) -> None:
        title = f"{topic.name}: {location.name}"
        player_body = location.description or (
            f"<p><strong>{html.escape(location.name)}</strong> is open for research.</p>"
        )
        capacity = str(location.max_points) if location.max_points else "unlimited"
        gm_body = f"{player_body}<p>{location.collected} / {capacity} RP collected.</p>"
        logger.info(f"Revealing location '{location.name}' on '{topic.name}'")
        await self.notifier.notify(AUDIENCE_PLAYER, title, player_body)
        await self.notifier.notify(AUDIENCE_GM, title, gm_body)
