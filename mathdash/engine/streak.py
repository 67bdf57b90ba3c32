"""
Streak tracking. Pure functions, no DB access.
"""
from dataclasses import dataclass, replace

from .dates import is_consecutive_day, is_same_day, parse_date_key


@dataclass(frozen=True)
class UserProgress:
    total_xp: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: str | None = None  # YYYY-MM-DD

    @classmethod
    def from_row(cls, row: dict) -> "UserProgress":
        raw = row.get("last_active_date")
        # Timestamp columns come back as "2024-01-01T08:30:00+00:00" or "2024-01-01 08:30:00+00"
        if isinstance(raw, str) and raw[10:11] in ("T", " "):
            raw = raw[:10]
        last = parse_date_key(raw)
        return cls(
            total_xp=row.get("total_xp") or 0,
            current_streak=row.get("current_streak") or 0,
            longest_streak=row.get("longest_streak") or 0,
            last_active_date=last.isoformat() if last else None,
        )

    def to_row(self) -> dict:
        return {
            "total_xp": self.total_xp,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_active_date": self.last_active_date,
        }


@dataclass(frozen=True)
class StreakUpdate:
    progress: UserProgress
    continued: bool   # False only when an existing streak was reset
    changed: bool     # False for a repeat on the same day


def evaluate_streak(progress: UserProgress, today: str) -> StreakUpdate:
    """
    Decide the next streak state for activity on `today`.

    Same day is a no-op so repeated completions cannot inflate the streak.
    A gap of two or more days, a negative gap, or an unreadable stored date
    all reset the streak to 1.
    """
    last = progress.last_active_date

    if last and is_same_day(last, today):
        return StreakUpdate(progress, continued=True, changed=False)

    if not last:
        new_streak, continued = 1, True
    elif is_consecutive_day(last, today):
        new_streak, continued = progress.current_streak + 1, True
    else:
        new_streak, continued = 1, False

    updated = replace(
        progress,
        current_streak=new_streak,
        longest_streak=max(progress.longest_streak, new_streak),
        last_active_date=today,
    )
    return StreakUpdate(updated, continued=continued, changed=True)


def apply_streak_update(progress: UserProgress, today: str) -> UserProgress:
    return evaluate_streak(progress, today).progress


def is_streak_at_risk(progress: UserProgress, today: str) -> bool:
    """A running streak with no activity recorded yet today."""
    return progress.current_streak > 0 and not is_same_day(progress.last_active_date, today)
