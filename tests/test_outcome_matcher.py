"""
Tests for tools/outcome_matcher.py — resolving skill checks to research targets.
"""

import asyncio

from conftest import make_event
from models.skill_checks import DegreeOfSuccess, SkillCheckEvent
from tools.outcome_matcher import OutcomeMatcher


async def _topic_with_locations(tracker, *locations, **topic_fields):
    topic = await tracker.create_topic({"name": topic_fields.pop("name", "Archive"), **topic_fields})
    created = []
    for location in locations:
        created.append(await tracker.create_location(topic.id, location))
    return topic, created


class TestEndToEnd:

    def test_success_on_matching_location(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(
                tracker, {"name": "Stacks", "maxPoints": 10, "collected": 0, "checks": [{"skill": "society", "dc": 15}]},
            )
            matcher = OutcomeMatcher(tracker)
            event = make_event(skill="society", outcome="success", dc=15)
            event.roll_payload = {"total": 19}
            result = await matcher.handle(event)

            assert result.applied
            assert result.location_id == location.id
            assert result.points == 1
            assert tracker.get_location(topic.id, location.id).collected == 1
            refreshed = tracker.get_topic(topic.id)
            assert (refreshed.progress, refreshed.target, refreshed.progress_percent) == (1, 10, 10.0)

            log = tracker.get_log(topic.id)
            assert len(log) == 1
            assert log[0].points == 1
            assert log[0].message == "Automatic: Society check (Success)"
            assert log[0].actor_uuid == "Actor.pc1"
            assert log[0].actor_name == "Ezren"
            assert log[0].roll == {"total": 19}

        asyncio.run(run())

    def test_topic_level_match(self, tracker):
        async def run():
            topic = await tracker.create_topic({"name": "Lore", "skill": "Arcana"})
            matcher = OutcomeMatcher(tracker)
            result = await matcher.handle(make_event(skill="arcana", outcome="critical-success"))
            assert result.applied
            assert result.location_id is None
            assert tracker.get_topic(topic.id).progress == 2

        asyncio.run(run())

    def test_critical_failure_costs_a_point(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(
                tracker, {"maxPoints": 5, "collected": 3, "skill": "society"},
            )
            result = await OutcomeMatcher(tracker).handle(make_event(outcome="CRITICAL FAILURE"))
            assert result.points == -1
            assert tracker.get_location(topic.id, location.id).collected == 2

        asyncio.run(run())


class TestAbstentions:

    def test_plain_failure_is_noop(self, tracker, backend):
        async def run():
            await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            saves = backend.save_count
            result = await OutcomeMatcher(tracker).handle(make_event(outcome="failure"))
            assert result.status == "ignored"
            assert backend.save_count == saves

        asyncio.run(run())

    def test_unknown_outcome(self, tracker):
        async def run():
            await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            result = await OutcomeMatcher(tracker).handle(make_event(outcome="partial"))
            assert result.status == "ignored"

        asyncio.run(run())

    def test_missing_skill(self, tracker):
        async def run():
            await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            result = await OutcomeMatcher(tracker).handle(make_event(skill=""))
            assert result.status == "ignored"

        asyncio.run(run())

    def test_non_player_actor(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            matcher = OutcomeMatcher(tracker)
            npc = await matcher.handle(make_event(event_id="a", kind="npc"))
            unowned = await matcher.handle(make_event(event_id="b", player=False))
            assert npc.status == unowned.status == "ignored"
            assert tracker.get_location(topic.id, location.id).collected == 0

        asyncio.run(run())

    def test_no_match_is_silent(self, tracker, caplog):
        async def run():
            await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            result = await OutcomeMatcher(tracker).handle(make_event(skill="athletics"))
            assert result.status == "abstained"

        asyncio.run(run())
        assert "WARNING" not in caplog.text


class TestDisambiguation:

    def test_two_open_locations_abstain(self, tracker, caplog):
        async def run():
            topic, locations = await _topic_with_locations(
                tracker, {"maxPoints": 5, "skill": "society"}, {"maxPoints": 5, "skill": "society"},
            )
            result = await OutcomeMatcher(tracker).handle(make_event(skill="society"))
            assert result.status == "abstained"
            assert tracker.get_topic(topic.id).progress == 0
            assert tracker.get_log() == []
            return topic, locations

        asyncio.run(run())
        warnings = [r for r in caplog.records if r.levelname == "WARNING"]
        assert len(warnings) == 1

    def test_assignment_breaks_the_tie(self, tracker):
        async def run():
            topic, (first, second) = await _topic_with_locations(
                tracker, {"maxPoints": 5, "skill": "society"}, {"maxPoints": 5, "skill": "society"},
            )
            await tracker.assign_actor(topic.id, second.id, "Actor.pc1", "Ezren")
            result = await OutcomeMatcher(tracker).handle(make_event())
            assert result.location_id == second.id
            assert tracker.get_location(topic.id, second.id).collected == 1
            assert tracker.get_location(topic.id, first.id).collected == 0

        asyncio.run(run())

    def test_assignment_tier_beats_open_tier(self, tracker):
        async def run():
            topic, (open_loc, assigned) = await _topic_with_locations(
                tracker,
                {"maxPoints": 5, "skill": "society"},
                {"maxPoints": 5, "skill": "society", "assignedActors": [{"uuid": "Actor.pc1"}]},
            )
            result = await OutcomeMatcher(tracker).handle(make_event())
            assert result.location_id == assigned.id

        asyncio.run(run())

    def test_other_actors_location_is_skipped(self, tracker):
        async def run():
            topic, (theirs, open_loc) = await _topic_with_locations(
                tracker,
                {"maxPoints": 5, "skill": "society", "assignedActors": ["Actor.someone-else"]},
                {"maxPoints": 5, "skill": "society"},
            )
            result = await OutcomeMatcher(tracker).handle(make_event())
            assert result.location_id == open_loc.id

        asyncio.run(run())

    def test_two_assigned_locations_abstain(self, tracker, caplog):
        async def run():
            await _topic_with_locations(
                tracker,
                {"maxPoints": 5, "skill": "society", "assignedActors": ["Actor.pc1"]},
                {"maxPoints": 5, "skill": "society", "assignedActors": ["Actor.pc1"]},
                {"maxPoints": 5, "skill": "society"},
            )
            result = await OutcomeMatcher(tracker).handle(make_event())
            assert result.status == "abstained"

        asyncio.run(run())
        assert "Multiple assigned research locations" in caplog.text

    def test_token_alias_matches_assignment(self, tracker):
        async def run():
            topic, (first, second) = await _topic_with_locations(
                tracker,
                {"maxPoints": 5, "skill": "society"},
                {"maxPoints": 5, "skill": "society", "assignedActors": ["Scene.s1.Token.t1"]},
            )
            event = make_event(alias_uuids=["Scene.s1.Token.t1"])
            result = await OutcomeMatcher(tracker).handle(event)
            assert result.location_id == second.id

        asyncio.run(run())

    def test_two_topics_abstain(self, tracker):
        async def run():
            await tracker.create_topic({"name": "A", "skill": "nature"})
            await tracker.create_topic({"name": "B", "skill": "nature"})
            result = await OutcomeMatcher(tracker).handle(make_event(skill="nature"))
            assert result.status == "abstained"

        asyncio.run(run())


class TestDcMatching:

    def test_dc_mismatch_excludes_candidate(self, tracker):
        async def run():
            topic, (easy, hard) = await _topic_with_locations(
                tracker,
                {"maxPoints": 5, "checks": [{"skill": "society", "dc": 15}]},
                {"maxPoints": 5, "checks": [{"skill": "society", "dc": 20}]},
            )
            result = await OutcomeMatcher(tracker).handle(make_event(dc=20))
            assert result.location_id == hard.id

        asyncio.run(run())

    def test_event_without_dc_skips_fixed_dc_location(self, tracker):
        async def run():
            await _topic_with_locations(tracker, {"maxPoints": 5, "checks": [{"skill": "society", "dc": 15}]})
            result = await OutcomeMatcher(tracker).handle(make_event(dc=None))
            assert result.status == "abstained"

        asyncio.run(run())

    def test_any_check_entry_can_match(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(
                tracker, {"maxPoints": 5, "checks": [{"skill": "society", "dc": 15}, {"skill": "occultism"}]},
            )
            result = await OutcomeMatcher(tracker).handle(make_event(skill="occultism", dc=30))
            assert result.location_id == location.id

        asyncio.run(run())

    def test_location_without_checks_uses_topic_skill(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(tracker, {"maxPoints": 5}, skill="religion")
            result = await OutcomeMatcher(tracker).handle(make_event(skill="religion", dc=12))
            assert result.location_id == location.id

        asyncio.run(run())


class TestIdempotency:

    def test_duplicate_event_processed_once(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            matcher = OutcomeMatcher(tracker)
            first = await matcher.handle(make_event(event_id="msg-9"))
            second = await matcher.handle(make_event(event_id="msg-9"))
            assert first.applied
            assert second.status == "duplicate"
            assert tracker.get_location(topic.id, location.id).collected == 1

        asyncio.run(run())

    def test_concurrent_redelivery(self, tracker):
        async def run():
            topic, (location,) = await _topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"})
            matcher = OutcomeMatcher(tracker)
            results = await asyncio.gather(*(matcher.handle(make_event(event_id="same")) for _ in range(3)))
            assert sorted(r.status for r in results) == ["applied", "duplicate", "duplicate"]
            assert tracker.get_location(topic.id, location.id).collected == 1

        asyncio.run(run())

    def test_matcher_built_outside_loop_serializes_later_runs(self, tracker):
        asyncio.run(_topic_with_locations(tracker, {"maxPoints": 5, "skill": "society"}))
        matcher = OutcomeMatcher(tracker)

        async def run(event_id):
            results = await asyncio.gather(*(matcher.handle(make_event(event_id=event_id)) for _ in range(3)))
            assert sorted(r.status for r in results) == ["applied", "duplicate", "duplicate"]

        asyncio.run(run("first-loop"))
        asyncio.run(run("second-loop"))

    def test_memory_is_bounded(self, tracker):
        async def run():
            matcher = OutcomeMatcher(tracker, max_remembered=2)
            for event_id in ("a", "b", "c"):
                await matcher.handle(make_event(event_id=event_id, outcome="failure"))
            again = await matcher.handle(make_event(event_id="a", outcome="failure"))
            assert again.status != "duplicate"

        asyncio.run(run())


class TestEventModel:

    def test_outcome_spellings(self):
        for spelling in ("criticalSuccess", "critical-success", "critical_success", "CRITICAL SUCCESS"):
            assert DegreeOfSuccess.parse(spelling) is DegreeOfSuccess.CRITICAL_SUCCESS

    def test_reason_uses_label_when_present(self):
        event = SkillCheckEvent(id="x", skill_slug="crafting-lore", outcome_degree="success")
        assert event.build_reason() == "Automatic: Crafting Lore check (Success)"
        event = SkillCheckEvent(id="x", skill_slug="soc", skill_label="Society", outcome_degree="criticalFailure")
        assert event.build_reason() == "Automatic: Society check (Critical Failure)"
