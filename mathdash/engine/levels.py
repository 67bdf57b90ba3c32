"""
Level table and XP resolution. Pure functions, no DB access.
"""
import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence


class ConfigurationError(Exception):
    """The level table is unusable. Raised at startup, never recovered."""


@dataclass(frozen=True)
class LevelDefinition:
    level: int
    title: str
    title_localized: str
    xp_required: int


@dataclass(frozen=True)
class LevelProgress:
    current_level: int
    title: str
    title_localized: str
    xp_into_level: int
    xp_needed_for_level: int   # span of the current level, 0 at max level
    xp_to_next_level: int
    progress_percent: int      # 0-100


DEFAULT_LEVELS: tuple[LevelDefinition, ...] = (
    LevelDefinition(1,  "Beginner",     "מתחיל",   0),
    LevelDefinition(2,  "Student",      "תלמיד",   100),
    LevelDefinition(3,  "Learner",      "לומד",    250),
    LevelDefinition(4,  "Practitioner", "מתרגל",   500),
    LevelDefinition(5,  "Scholar",      "חוקר",    1000),
    LevelDefinition(6,  "Expert",       "מומחה",   2000),
    LevelDefinition(7,  "Master",       "אמן",     3500),
    LevelDefinition(8,  "Grandmaster",  "רב אמן",  5500),
    LevelDefinition(9,  "Legend",       "אגדה",    8000),
    LevelDefinition(10, "Sage",         "חכם",     10000),
)


def _check_ascending(levels: Sequence[LevelDefinition]) -> None:
    for prev, cur in zip(levels, levels[1:]):
        if cur.level <= prev.level:
            raise ConfigurationError(f"levels out of order: {prev.level} then {cur.level}")
        if cur.xp_required <= prev.xp_required:
            raise ConfigurationError(
                f"xp_required must increase: level {prev.level}={prev.xp_required}, "
                f"level {cur.level}={cur.xp_required}"
            )


def validate_level_table(levels: Iterable[LevelDefinition]) -> tuple[LevelDefinition, ...]:
    """
    Check the table invariants and return it as an immutable tuple.

    The first entry must be level 1 at 0 XP, and both `level` and
    `xp_required` must be strictly increasing.
    """
    table = tuple(levels)
    if not table:
        raise ConfigurationError("level table is empty")

    first = table[0]
    if first.level != 1 or first.xp_required != 0:
        raise ConfigurationError(
            f"level table must start at level 1 with 0 XP, got level {first.level} "
            f"at {first.xp_required} XP"
        )

    _check_ascending(table)
    return table


def load_level_table(rows: Iterable[Mapping]) -> tuple[LevelDefinition, ...]:
    """Build a validated table from plain dicts (e.g. parsed JSON)."""
    try:
        levels = [
            LevelDefinition(
                level=int(row["level"]),
                title=str(row["title"]),
                title_localized=str(row.get("title_localized") or row["title"]),
                xp_required=int(row["xp_required"]),
            )
            for row in rows
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"malformed level definition: {e}") from e
    return validate_level_table(levels)


def load_level_table_file(path: str | Path) -> tuple[LevelDefinition, ...]:
    try:
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read level table {path}: {e}") from e
    if not isinstance(rows, list):
        raise ConfigurationError(f"level table {path} must be a JSON list")
    return load_level_table(rows)


def _current_index(total_xp: int, levels: Sequence[LevelDefinition]) -> int:
    index = 0
    for i, definition in enumerate(levels):
        if total_xp >= definition.xp_required:
            index = i
        else:
            break
    return index


def resolve_level(total_xp: int, levels: Sequence[LevelDefinition]) -> LevelProgress:
    """
    Resolve total XP against the level table.

    Thresholds are inclusive: reaching `xp_required` exactly puts the user
    on that level. At max level the progress is reported as 100%.
    """
    if not levels:
        raise ConfigurationError("level table is empty")
    _check_ascending(levels)

    total_xp = max(total_xp, 0)
    index = _current_index(total_xp, levels)
    current = levels[index]

    if index + 1 >= len(levels):
        return LevelProgress(
            current_level=current.level,
            title=current.title,
            title_localized=current.title_localized,
            xp_into_level=total_xp - current.xp_required,
            xp_needed_for_level=0,
            xp_to_next_level=0,
            progress_percent=100,
        )

    nxt = levels[index + 1]
    xp_into_level = total_xp - current.xp_required
    span = nxt.xp_required - current.xp_required
    percent = math.floor(100 * xp_into_level / span + 0.5)

    return LevelProgress(
        current_level=current.level,
        title=current.title,
        title_localized=current.title_localized,
        xp_into_level=xp_into_level,
        xp_needed_for_level=span,
        xp_to_next_level=max(0, nxt.xp_required - total_xp),
        progress_percent=min(100, max(0, percent)),
    )


def level_for_xp(total_xp: int, levels: Sequence[LevelDefinition]) -> int:
    return resolve_level(total_xp, levels).current_level


def level_definition(level: int, levels: Sequence[LevelDefinition]) -> LevelDefinition:
    """Look up a level by number, clamped to the table's range."""
    if not levels:
        raise ConfigurationError("level table is empty")
    for definition in levels:
        if definition.level == level:
            return definition
    if level < levels[0].level:
        return levels[0]
    if level > levels[-1].level:
        return levels[-1]
    # Sparse tables: fall back to the highest level below the requested one
    return max((d for d in levels if d.level < level), key=lambda d: d.level)


def leveled_up(old_xp: int, new_xp: int, levels: Sequence[LevelDefinition]) -> bool:
    return level_for_xp(new_xp, levels) > level_for_xp(old_xp, levels)
