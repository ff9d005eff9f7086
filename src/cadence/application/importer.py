"""
YAML deck import.

A deck file looks like:

    deck: Spanish
    description: Everyday vocabulary
    policy:
      learning_steps: [1m, 10m]
      new_cards_per_day: 15
    cards:
      - front: hola
        back: hello
        tags: [greeting]
      - front: perro
        back: dog
        image: images/dog.png

Cards whose front already exists in the target deck are skipped.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from cadence.application.scheduler_service import SchedulerService
from cadence.application.utils.clock import parse_duration
from cadence.domain.errors import PolicyViolation
from cadence.domain.models import CardContent, DeckPolicy, ImageContent, TextContent

logger = logging.getLogger(__name__)

_DURATION_FIELDS = {"learning_steps", "relearning_steps", "hard_step"}
_INT_FIELDS = {"new_cards_per_day", "max_reviews_per_day"}
_BOOL_FIELDS = {"lapsed_cards_relearn"}


@dataclass
class ImportResult:
    deck_id: str
    deck_name: str
    created_deck: bool
    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def parse_policy(raw: dict[str, Any] | None, base: DeckPolicy | None = None) -> DeckPolicy:
    """
    Build a DeckPolicy from plain values, e.g. parsed YAML or CLI options.

    Step durations may be given as strings ("10m", "1d"). Unknown keys are
    rejected.

    Raises:
        PolicyViolation: On unknown keys, bad durations or out-of-range values.
    """
    base = base or DeckPolicy()
    if not raw:
        return base.validate()
    if not isinstance(raw, dict):
        raise PolicyViolation(f"policy must be a mapping, got {type(raw).__name__}")

    known = {f.name for f in fields(DeckPolicy)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise PolicyViolation(f"Unknown policy keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    try:
        for key, value in raw.items():
            if key in _DURATION_FIELDS:
                values[key] = _parse_steps(key, value)
            elif key in _INT_FIELDS:
                values[key] = int(value)
            elif key in _BOOL_FIELDS:
                values[key] = bool(value)
            else:
                values[key] = float(value)
    except (TypeError, ValueError) as e:
        raise PolicyViolation(str(e)) from e

    current = {f.name: getattr(base, f.name) for f in fields(DeckPolicy)}
    return DeckPolicy(**{**current, **values}).validate()


def import_deck_file(scheduler: SchedulerService, path: Path, now: datetime) -> ImportResult:
    """
    Import a YAML deck file into the scheduler.

    The deck is matched by name and created if missing; a policy block
    in the file replaces the existing deck's policy.

    Raises:
        ValueError: If the file is not a valid deck document.
        PolicyViolation: If the policy block is invalid.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"{path}: invalid YAML: {e}") from e

    if not isinstance(data, dict) or not data.get("deck"):
        raise ValueError(f"{path}: expected a mapping with a 'deck' name")

    cards = data.get("cards") or []
    if not isinstance(cards, list):
        raise ValueError(f"{path}: 'cards' must be a list")

    name = str(data["deck"])
    deck = scheduler.find_deck(name)
    created = deck is None

    if deck is None:
        policy = parse_policy(data.get("policy"))
        description = data.get("description")
        deck = scheduler.create_deck(name, now, policy=policy, description=description)
    elif data.get("policy"):
        deck = scheduler.update_policy(deck.id, parse_policy(data["policy"], base=deck.policy))

    result = ImportResult(deck_id=deck.id, deck_name=name, created_deck=created)
    existing = {c.content.front for c in scheduler.cards_in_deck(deck.id)}

    pending: list[tuple[CardContent, list[str]]] = []
    for index, raw in enumerate(cards):
        content = _parse_content(raw)
        if content is None:
            logger.warning(f"{path}: card #{index} has no front/back; skipping")
            result.skipped.append(f"#{index}")
            continue
        if content.front in existing:
            logger.debug(f"{path}: duplicate front '{content.front}'; skipping")
            result.skipped.append(content.front)
            continue

        pending.append((content, _parse_tags(raw.get("tags"))))
        existing.add(content.front)

    added = scheduler.add_cards(deck.id, pending, now)
    result.imported.extend(card.id for card in added)

    logger.info(
        f"Imported {len(result.imported)} cards into {name} ({len(result.skipped)} skipped)"
    )
    return result


def _parse_steps(key: str, value: Any):
    if key == "hard_step":
        return None if value is None else parse_duration(str(value))
    if isinstance(value, str):
        value = value.split()
    return tuple(parse_duration(str(v)) for v in value)


def _parse_tags(value: Any) -> list[str]:
    # A bare scalar is a single tag
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [str(t) for t in value]
    return [str(value)]


def _parse_content(raw: Any) -> CardContent | None:
    if not isinstance(raw, dict):
        return None
    front, back = raw.get("front"), raw.get("back")
    if front is None or back is None:
        return None
    if raw.get("image"):
        return ImageContent(front=str(front), back=str(back), image_path=str(raw["image"]))
    return TextContent(front=str(front), back=str(back))
