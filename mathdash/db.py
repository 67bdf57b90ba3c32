import os
import logging
import hashlib
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable

from supabase import create_client, Client

from .engine.streak import UserProgress

logger = logging.getLogger(__name__)

PROFILE_TABLE = "users_profile"

ProgressListener = Callable[[str, UserProgress], None]
_listeners: list[ProgressListener] = []


class ProfileNotFoundError(Exception):
    pass


class ProgressConflictError(Exception):
    """Concurrent writers kept winning the revision race."""


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def on_progress_saved(listener: ProgressListener) -> ProgressListener:
    """Register a callback run after every successful progress write."""
    _listeners.append(listener)
    return listener


def _notify(user_id: str, progress: UserProgress) -> None:
    for listener in list(_listeners):
        try:
            listener(user_id, progress)
        except Exception as e:
            logger.error("Progress listener %r failed for %s: %s", listener, user_id[:8], e)


def make_source_key(user_id: str, award_id: str) -> str:
    raw = f"{user_id}:{award_id}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


def is_already_processed(db: Client, source_key: str) -> bool:
    try:
        db.table("processed_events").insert({"source_key": source_key}).execute()
        return False
    except Exception as e:
        # A unique-constraint violation means the award was already applied;
        # anything else is unexpected and should be visible in logs.
        err_str = str(e).lower()
        if "duplicate" in err_str or "unique" in err_str or "23505" in err_str:
            return True
        logger.error("Unexpected deduplication error for key=%s: %s", source_key, e)
        return True  # treat as duplicate to avoid double-XP on transient errors


def release_source_key(db: Client, source_key: str) -> None:
    """Free a claimed key after the award it guarded failed to apply."""
    db.table("processed_events").delete().eq("source_key", source_key).execute()


def get_profile(db: Client, user_id: str) -> dict | None:
    res = db.table(PROFILE_TABLE).select("*").eq("user_id", user_id).limit(1).execute()
    return res.data[0] if res.data else None


def create_profile(db: Client, user_id: str, email: str | None = None, display_name: str | None = None) -> dict:
    row = {
        "user_id": user_id,
        "email": email,
        "display_name": display_name,
        "current_level": 1,
        "revision": 0,
        **UserProgress().to_row(),
    }
    db.table(PROFILE_TABLE).insert(row).execute()
    return row


def compare_and_swap_progress(db: Client, user_id: str, revision: int, updates: dict) -> bool:
    """Write `updates` only if the row is still at `revision`. Returns False on a lost race."""
    res = (
        db.table(PROFILE_TABLE)
        .update({**updates, "revision": revision + 1})
        .eq("user_id", user_id)
        .eq("revision", revision)
        .execute()
    )
    return bool(res.data)


def update_progress(
    db: Client,
    user_id: str,
    mutate: Callable[[dict, UserProgress], dict],
    max_attempts: int = 5,
) -> tuple[dict, dict]:
    """
    Optimistic read-modify-write of a user's progress.

    `mutate(row, progress)` returns the column updates to apply; it may run
    more than once, so it must be pure. Returns (old_row, new_row).
    """
    for attempt in range(1, max_attempts + 1):
        row = get_profile(db, user_id)
        if row is None:
            raise ProfileNotFoundError(user_id)

        updates = mutate(row, UserProgress.from_row(row))
        revision = row.get("revision") or 0
        if not updates:
            return row, row

        if compare_and_swap_progress(db, user_id, revision, updates):
            new_row = {**row, **updates, "revision": revision + 1}
            _notify(user_id, UserProgress.from_row(new_row))
            return row, new_row

        logger.info("Revision conflict for %s... (attempt %d/%d)", user_id[:8], attempt, max_attempts)

    raise ProgressConflictError(f"gave up updating {user_id} after {max_attempts} attempts")


def log_xp(db: Client, user_id: str, source: str, amount: int) -> None:
    db.table("xp_log").insert({
        "user_id": user_id,
        "source": source,
        "amount": amount,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }).execute()


def list_streak_candidates(db: Client) -> list[dict]:
    """Profiles with streak warnings on and a running streak."""
    res = (
        db.table(PROFILE_TABLE)
        .select("user_id, email, display_name, current_streak, longest_streak, last_active_date, total_xp")
        .eq("streak_warnings", True)
        .gt("current_streak", 0)
        .limit(1000)
        .execute()
    )
    return res.data or []
