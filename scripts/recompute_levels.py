"""
Recompute the stored current_level of user profiles from their total_xp.

Useful after changing the level table (LEVEL_TABLE_PATH). Safe to run
multiple times (idempotent).

Usage:
    pip install -e .
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/recompute_levels.py <user_id>
    python scripts/recompute_levels.py --all [--dry-run]
"""
import sys

from dotenv import load_dotenv

from mathdash.config import get_level_table
from mathdash.db import PROFILE_TABLE, get_client, compare_and_swap_progress
from mathdash.engine.levels import level_for_xp


PAGE_SIZE = 1000  # Supabase row limit per request


def fetch_profiles(db, user_id: str | None) -> list[dict]:
    """Fetch one profile, or all profiles in pages."""
    query_columns = "user_id, total_xp, current_level, revision"
    if user_id:
        res = db.table(PROFILE_TABLE).select(query_columns).eq("user_id", user_id).execute()
        return res.data or []

    profiles = []
    offset = 0
    while True:
        res = (
            db.table(PROFILE_TABLE)
            .select(query_columns)
            .order("user_id")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        profiles.extend(batch)
        print(f"  fetched {len(profiles)} profiles...", end="\r")
        if len(batch) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
    print(f"  fetched {len(profiles)} profiles total          ")
    return profiles


def compute_changes(profiles: list[dict], levels) -> list[tuple[dict, int]]:
    """Return (profile, correct_level) for every profile whose stored level is stale."""
    changes = []
    for row in profiles:
        level = level_for_xp(row.get("total_xp") or 0, levels)
        if level != row.get("current_level"):
            changes.append((row, level))
    return changes


def run(user_id: str | None, dry_run: bool = False) -> int:
    print(f"\nRecomputing levels for {user_id[:8] + '...' if user_id else 'all profiles'}\n")

    levels = get_level_table()
    db = get_client()

    profiles = fetch_profiles(db, user_id)
    if not profiles:
        print("  No profiles found, nothing to do.")
        return 0

    changes = compute_changes(profiles, levels)
    for row, level in changes:
        print(f"    {row['user_id'][:8]}...: {row.get('total_xp', 0)} XP, "
              f"level {row.get('current_level')} -> {level}")

    if dry_run:
        print(f"\n  DRY RUN: {len(changes)} profiles would change, no changes written.")
        return len(changes)

    written = 0
    for row, level in changes:
        # A concurrent XP award bumps the revision and sets current_level itself
        if compare_and_swap_progress(db, row["user_id"], row.get("revision") or 0, {"current_level": level}):
            written += 1
        else:
            print(f"    skipped {row['user_id'][:8]}... (updated concurrently)")

    print(f"\nUpdated {written} of {len(changes)} stale profiles.\n")
    return written


if __name__ == "__main__":
    load_dotenv()
    args = [a for a in sys.argv[1:] if a not in ("--dry-run", "--all")]
    dry = "--dry-run" in sys.argv

    if not args and "--all" not in sys.argv:
        print("Usage: python scripts/recompute_levels.py <user_id> | --all [--dry-run]")
        sys.exit(1)

    run(args[0] if args else None, dry_run=dry)
