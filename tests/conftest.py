"""
Shared pytest fixtures for the research tracker test suite.

No network or database access: persistence goes to an in-memory backend
and notifications are recorded instead of sent.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.skill_checks import ActorIdentity, SkillCheckEvent
from tools.research_tracker import ResearchTracker
from tools.state_backends import MemoryStateBackend


# ---------------------------------------------------------------------------
# Helpers (reusable classes)
# ---------------------------------------------------------------------------

class RecordingNotifier:
    """Notifier that remembers every announcement.

    Usage:
        notifier = RecordingNotifier()
        await notifier.notify("player", "Title", "<p>Body</p>")
        assert notifier.sent == [("player", "Title", "<p>Body</p>")]
    """

    def __init__(self):
        self.sent = []

    async def notify(self, audience: str, title: str, body_html: str) -> None:
        self.sent.append((audience, title, body_html))

    def for_audience(self, audience: str):
        return [entry for entry in self.sent if entry[0] == audience]


def make_tracker(initial=None, notifier=None):
    """Build and initialize a tracker on a memory backend (sync helper)."""
    backend = MemoryStateBackend(initial)
    tracker = ResearchTracker(backend, notifier or RecordingNotifier())
    asyncio.run(tracker.initialize())
    return tracker


def make_event(event_id="msg-1", skill="society", outcome="success", dc=None,
               actor_id="pc1", kind="character", player=True, **actor_fields):
    """A skill-check event from a player character unless told otherwise."""
    actor = ActorIdentity(
        id=actor_id,
        uuid=f"Actor.{actor_id}",
        name=actor_fields.pop("name", "Ezren"),
        kind=kind,
        is_player_controlled=player,
        **actor_fields,
    )
    return SkillCheckEvent(id=event_id, skill_slug=skill, outcome_degree=outcome, dc=dc, actor=actor)


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def backend():
    return MemoryStateBackend()


@pytest.fixture
def tracker(backend, notifier):
    """Initialized tracker on an empty memory backend."""
    tracker = ResearchTracker(backend, notifier)
    asyncio.run(tracker.initialize())
    return tracker


@pytest.fixture
def failing_backend():
    """AsyncMock backend whose saves always fail."""
    from tools.tracker_errors import PersistenceError

    backend = MagicMock()
    backend.load = AsyncMock(return_value={"topics": [], "log": []})
    backend.save = AsyncMock(side_effect=PersistenceError("disk full"))
    return backend
