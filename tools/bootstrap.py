"""
Wiring: logging, persistence backend, notifier, tracker and matcher from
one TrackerSettings.

Usage:
    settings = TrackerSettings.from_env()
    configure_logging(settings)
    tracker, matcher = await build_tracker(settings)
"""

import logging
import os
from typing import Optional, Tuple

from tools.mongo_state import MongoStateBackend
from tools.notifier import DiscordWebhookNotifier, LoggingNotifier, Notifier
from tools.outcome_matcher import OutcomeMatcher
from tools.research_tracker import ResearchTracker
from tools.settings import TrackerSettings
from tools.state_backends import JsonFileStateBackend, MemoryStateBackend, StateBackend
from tools.tracker_errors import BackendNotConnectedError

logger = logging.getLogger("Bootstrap")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: TrackerSettings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


async def build_backend(settings: TrackerSettings) -> StateBackend:
    """Create (and for MongoDB, connect) the configured backend."""
    if settings.state_backend == "memory":
        return MemoryStateBackend()
    if settings.state_backend == "mongo":
        backend = MongoStateBackend(settings.mongodb_uri, settings.mongodb_db)
        if not await backend.connect():
            raise BackendNotConnectedError(f"Could not connect to MongoDB at {settings.mongodb_uri}")
        return backend
    return JsonFileStateBackend(settings.state_path)


def build_notifier(settings: TrackerSettings) -> Notifier:
    if settings.webhooks_configured:
        return DiscordWebhookNotifier(settings.player_webhook_url, settings.gm_webhook_url)
    if settings.player_webhook_url or settings.gm_webhook_url:
        logger.warning("Only one Discord webhook is configured; reveals will be logged instead.")
    return LoggingNotifier()


async def build_tracker(
    settings: TrackerSettings, notifier: Optional[Notifier] = None
) -> Tuple[ResearchTracker, OutcomeMatcher]:
    """Build, load and return the tracker with its outcome matcher."""
    backend = await build_backend(settings)
    tracker = ResearchTracker(backend, notifier or build_notifier(settings))
    await tracker.initialize()
    return tracker, OutcomeMatcher(tracker)


async def shutdown(tracker: ResearchTracker) -> None:
    """Release the backend connection and notifier session, if any."""
    notifier = tracker.reveals.notifier
    if isinstance(notifier, DiscordWebhookNotifier):
        await notifier.close()
    if isinstance(tracker.backend, MongoStateBackend):
        await tracker.backend.close()
