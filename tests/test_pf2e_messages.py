"""
Unit tests for tools/pf2e_messages.py — chat message to SkillCheckEvent.
"""

from models.skill_checks import DegreeOfSuccess
from tools.pf2e_messages import (
    extract_actor,
    extract_outcome,
    extract_roll,
    extract_skill_slug,
    skill_check_event_from_message,
)


def _message(**context):
    base = {
        "type": "skill-check",
        "outcome": "success",
        "skillCheck": {"slug": "society", "label": "Society"},
        "dc": {"value": 15},
    }
    base.update(context)
    return {
        "_id": "msg1",
        "uuid": "ChatMessage.msg1",
        "flags": {"pf2e": {"context": base}},
        "actor": {"_id": "pc1", "uuid": "Actor.pc1", "name": "Ezren", "type": "character", "hasPlayerOwner": True},
        "speaker": {"actor": "pc1", "scene": "s1", "token": "t1", "alias": "Ez"},
        "rolls": [{"class": "CheckRoll", "total": 21}],
    }


class TestSkillCheckEventFromMessage:

    def test_full_message(self):
        event = skill_check_event_from_message(_message())
        assert event.id == "ChatMessage.msg1"
        assert event.skill_slug == "society"
        assert event.skill_label == "Society"
        assert event.outcome_degree is DegreeOfSuccess.SUCCESS
        assert event.dc == 15
        assert event.actor.is_player_character
        assert event.actor.candidate_uuids == {"Actor.pc1", "Scene.s1.Token.t1"}
        assert event.roll_payload == {"class": "CheckRoll", "total": 21}

    def test_non_skill_check_ignored(self):
        assert skill_check_event_from_message(_message(type="attack-roll")) is None
        assert skill_check_event_from_message({"flags": {}}) is None
        assert skill_check_event_from_message("not a message") is None

    def test_id_fallback(self):
        message = _message()
        del message["uuid"]
        assert skill_check_event_from_message(message).id == "msg1"

    def test_missing_id_skipped(self):
        message = _message()
        del message["uuid"]
        del message["_id"]
        assert skill_check_event_from_message(message) is None

    def test_plain_dc_and_label_fallback(self):
        message = _message(dc=18, skillCheck="crafting-lore")
        event = skill_check_event_from_message(message)
        assert event.dc == 18
        assert event.skill_slug == "crafting-lore"
        assert event.skill_label == "Crafting Lore"


class TestExtractors:

    def test_outcome_sources(self):
        assert extract_outcome({"outcome": "failure"}) == "failure"
        assert extract_outcome({"degreeOfSuccess": {"value": "criticalSuccess"}}) == "criticalSuccess"
        assert extract_outcome({"degreeOfSuccess": "criticalFailure"}) == "criticalFailure"
        assert extract_outcome({"result": "success"}) == "success"
        assert extract_outcome({}) is None

    def test_slug_sources(self):
        assert extract_skill_slug({"slug": "Arcana"}) == "arcana"
        assert extract_skill_slug({"skill": "nature"}) == "nature"
        assert extract_skill_slug({"options": ["self:pc", "skill-check:Occultism"]}) == "occultism"
        assert extract_skill_slug({"options": ["action:recall-knowledge"]}) is None

    def test_roll_sources(self):
        assert extract_roll({"roll": {"total": 3}}) == {"total": 3}
        assert extract_roll({"rolls": ['{"total": 12}']}) == {"total": 12}
        assert extract_roll({"rolls": ["not json"]}) is None
        assert extract_roll({}) is None

    def test_actor_from_speaker_only(self):
        actor = extract_actor({"speaker": {"actor": "pc2", "alias": "Merisiel"}})
        assert actor.id == "pc2"
        assert actor.name == "Merisiel"
        assert not actor.is_player_character
        assert actor.primary_uuid == "Actor.pc2"

    def test_npc_actor(self):
        actor = extract_actor({"actor": {"_id": "n1", "type": "npc", "hasPlayerOwner": False}})
        assert actor.kind == "npc"
        assert not actor.is_player_character
