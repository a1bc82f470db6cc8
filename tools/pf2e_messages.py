"""
PF2e chat-message adapter — the outcome source for the matcher.

Foundry's PF2e system stores a finished roll as a chat message whose
``flags.pf2e.context`` describes the check. This module reads that JSON
(as exported or relayed from the VTT) and produces a SkillCheckEvent.
Anything that is not a skill check yields None.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from models.common import clean_str
from models.skill_checks import ActorIdentity, SkillCheckEvent, to_title_case

logger = logging.getLogger("Pf2eMessages")

SKILL_OPTION_PATTERN = re.compile(r"^skill-check:([a-z0-9-]+)$", re.IGNORECASE)


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def extract_outcome(context: Dict[str, Any]) -> Optional[str]:
    degree = context.get("degreeOfSuccess")
    raw = _first(
        context.get("outcome"),
        degree.get("value") if isinstance(degree, dict) else None,
        degree if not isinstance(degree, dict) else None,
        context.get("result"),
    )
    return str(raw) if raw not in (None, "") else None


def find_skill_in_options(options: Any) -> Optional[str]:
    if not isinstance(options, list):
        return None
    for option in options:
        if not isinstance(option, str):
            continue
        match = SKILL_OPTION_PATTERN.match(option)
        if match:
            return match.group(1).lower()
    return None


def extract_skill_slug(context: Dict[str, Any]) -> Optional[str]:
    skill_check = context.get("skillCheck")
    candidates = [
        skill_check.get("slug") if isinstance(skill_check, dict) else skill_check,
        context.get("slug"),
        context.get("skill"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip().lower()
    return find_skill_in_options(context.get("options"))


def extract_skill_label(context: Dict[str, Any], slug: str) -> str:
    label = _first(_dig(context, "skillCheck", "label"), context.get("label"))
    return clean_str(label) or to_title_case(slug)


def extract_dc(context: Dict[str, Any]) -> Any:
    dc = context.get("dc")
    return dc.get("value") if isinstance(dc, dict) else dc


def extract_roll(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    rolls = message.get("rolls")
    if isinstance(rolls, list) and rolls:
        roll = rolls[0]
    else:
        roll = message.get("roll")
    # Foundry serializes rolls as JSON strings inside exported messages.
    if isinstance(roll, str):
        try:
            roll = json.loads(roll)
        except ValueError:
            return None
    return roll if isinstance(roll, dict) else None


def extract_actor(message: Dict[str, Any]) -> ActorIdentity:
    actor = message.get("actor") if isinstance(message.get("actor"), dict) else {}
    speaker = message.get("speaker") if isinstance(message.get("speaker"), dict) else {}

    actor_id = clean_str(actor.get("_id")) or clean_str(actor.get("id")) or clean_str(speaker.get("actor"))
    aliases: List[str] = []
    if clean_str(speaker.get("actor")):
        aliases.append(f"Actor.{speaker['actor'].strip()}")
    scene, token = clean_str(speaker.get("scene")), clean_str(speaker.get("token"))
    if scene and token:
        aliases.append(f"Scene.{scene}.Token.{token}")

    player_controlled = actor.get("hasPlayerOwner")
    if not isinstance(player_controlled, bool):
        player_controlled = bool(actor.get("playerOwned") or message.get("playerOwned"))

    return ActorIdentity(
        id=actor_id,
        uuid=clean_str(actor.get("uuid")) or None,
        name=clean_str(actor.get("name")) or clean_str(speaker.get("alias")) or None,
        kind=actor.get("type") or message.get("actorType") or "",
        is_player_controlled=player_controlled,
        alias_uuids=aliases,
    )


def skill_check_event_from_message(message: Any) -> Optional[SkillCheckEvent]:
    """Build a SkillCheckEvent from a PF2e chat message, or None.

    Usage:
        event = skill_check_event_from_message(json.loads(raw))
        if event:
            await matcher.handle(event)
    """
    if not isinstance(message, dict):
        return None
    context = _dig(message, "flags", "pf2e", "context")
    if not isinstance(context, dict) or context.get("type") != "skill-check":
        return None

    event_id = clean_str(message.get("uuid")) or clean_str(message.get("_id")) or clean_str(message.get("id"))
    if not event_id:
        logger.warning("Skill-check message has no id; cannot deduplicate, skipping.")
        return None

    slug = extract_skill_slug(context) or ""
    return SkillCheckEvent(
        id=event_id,
        skill_slug=slug,
        skill_label=extract_skill_label(context, slug) if slug else None,
        outcome_degree=extract_outcome(context),
        dc=extract_dc(context),
        actor=extract_actor(message),
        roll_payload=extract_roll(message),
    )
