"""
XP reward rules for practice sessions. Pure functions, no DB access.
"""
from typing import Iterable

BASE_XP: dict[str, int] = {
    "easy": 10,
    "medium": 15,
    "hard": 20,
}

# learn/review award half XP for viewing a solution instead of answering
MODE_MULTIPLIER: dict[str, float] = {
    "learn": 0.5,
    "review": 0.5,
    "practice": 1.0,
}

SESSION_COMPLETION_BONUS = 15

XP_SOURCES = ("question", "daily_completion", "session_completion", "streak_bonus", "perfect_day")


def question_xp(difficulty: str, mode: str = "practice") -> int:
    if difficulty not in BASE_XP:
        raise ValueError(f"unknown difficulty: {difficulty!r}")
    if mode not in MODE_MULTIPLIER:
        raise ValueError(f"unknown session mode: {mode!r}")
    # Round half up: 15 * 0.5 gives 8
    return int(BASE_XP[difficulty] * MODE_MULTIPLIER[mode] + 0.5)


def session_xp(questions: Iterable[tuple[str, str]], completed: bool) -> int:
    """Total XP for a session: each (difficulty, mode) question plus the completion bonus."""
    total = sum(question_xp(difficulty, mode) for difficulty, mode in questions)
    if completed:
        total += SESSION_COMPLETION_BONUS
    return total
