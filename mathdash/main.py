"""
mathdash: gamification API (XP, levels, streaks)
"""
import hmac
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import get_settings, get_level_table
from .db import (
    get_client, get_profile, create_profile, update_progress,
    log_xp, is_already_processed, release_source_key, make_source_key, list_streak_candidates,
    ProfileNotFoundError, ProgressConflictError,
)
from .engine.dates import current_date_key
from .engine.levels import resolve_level, level_for_xp, level_definition, leveled_up
from .engine.streak import UserProgress, evaluate_streak, is_streak_at_risk
from .models import ProfileCreate, XpAwardRequest, GamificationStats, XpAwardResult, StreakResult

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # An invalid level table raises ConfigurationError here and aborts startup
    app.state.levels = get_level_table()
    logger.info("Level table ready: %d levels, reference timezone %s",
                len(app.state.levels), get_settings().reference_timezone)
    yield


limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="mathdash API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().allowed_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/health")
def health():
    try:
        db = get_client()
        db.table("users_profile").select("user_id").limit(1).execute()
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_user_id(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    user_id = authorization.removeprefix("Bearer ").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Empty Bearer token")
    return user_id


def require_profile(user_id: str = Depends(get_user_id)) -> str:
    db = get_client()
    if not get_profile(db, user_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return user_id


def get_levels(request: Request):
    return request.app.state.levels


def today_key() -> str:
    return current_date_key(get_settings().reference_timezone)


# ── Levels ────────────────────────────────────────────────────────────────────

@app.get("/api/levels")
def list_levels(levels=Depends(get_levels)):
    return {
        "levels": [
            {
                "level": d.level,
                "title": d.title,
                "title_localized": d.title_localized,
                "xp_required": d.xp_required,
            }
            for d in levels
        ]
    }


# ── Profile ───────────────────────────────────────────────────────────────────

@app.post("/api/profiles", status_code=201)
@limiter.limit("10/minute")
def register_profile(request: Request, body: ProfileCreate, user_id: str = Depends(get_user_id)):
    db = get_client()
    if get_profile(db, user_id):
        return {"status": "already_registered"}
    create_profile(db, user_id, email=body.email, display_name=body.display_name)
    logger.info("Profile created: %s...", user_id[:8])
    return {"status": "registered"}


@app.get("/api/profile/{profile_user_id}", response_model=GamificationStats)
def get_stats(profile_user_id: str, levels=Depends(get_levels)):
    db = get_client()
    row = get_profile(db, profile_user_id)
    if not row:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _build_stats(UserProgress.from_row(row), levels, today_key())


# ── XP & streaks ──────────────────────────────────────────────────────────────

@app.post("/api/xp", response_model=XpAwardResult)
@limiter.limit("120/minute")
def award_xp(request: Request, body: XpAwardRequest, user_id: str = Depends(require_profile),
             levels=Depends(get_levels)):
    db = get_client()
    today = today_key()
    amount = body.xp_amount()
    source_key = None

    if body.idempotency_key:
        source_key = make_source_key(user_id, body.idempotency_key)
        if is_already_processed(db, source_key):
            row = get_profile(db, user_id) or {}
            progress = UserProgress.from_row(row)
            return {
                "status": "duplicate",
                "xp_awarded": 0,
                "total_xp": progress.total_xp,
                "current_level": level_for_xp(progress.total_xp, levels),
                "leveled_up": False,
                "current_streak": progress.current_streak,
                "longest_streak": progress.longest_streak,
                "streak_continued": None,
            }

    def add_xp(row: dict, progress: UserProgress) -> dict:
        streak = evaluate_streak(progress, today).progress
        new_total = progress.total_xp + amount
        return {
            **streak.to_row(),
            "total_xp": new_total,
            "current_level": level_for_xp(new_total, levels),
        }

    try:
        old_row, new_row = _run_update(db, user_id, add_xp)
    except Exception:
        # Nothing was written, so the key must stay usable for a retry
        if source_key:
            release_source_key(db, source_key)
        raise
    old = UserProgress.from_row(old_row)
    new = UserProgress.from_row(new_row)
    log_xp(db, user_id, body.source, amount)

    new_level = level_for_xp(new.total_xp, levels)
    level_up = leveled_up(old.total_xp, new.total_xp, levels)
    if level_up:
        logger.info("User %s... leveled up to %d (%s)",
                    user_id[:8], new_level, level_definition(new_level, levels).title)
    logger.info("XP for %s...: +%d (%s), total %d, streak %d",
                user_id[:8], amount, body.source, new.total_xp, new.current_streak)

    return {
        "status": "ok",
        "xp_awarded": amount,
        "total_xp": new.total_xp,
        "current_level": new_level,
        "leveled_up": level_up,
        "current_streak": new.current_streak,
        "longest_streak": new.longest_streak,
        "streak_continued": evaluate_streak(old, today).continued,
    }


@app.post("/api/streak", response_model=StreakResult)
def update_streak(user_id: str = Depends(require_profile)):
    db = get_client()
    today = today_key()

    def bump_streak(row: dict, progress: UserProgress) -> dict:
        decision = evaluate_streak(progress, today)
        if not decision.changed:
            return {}
        return {
            "current_streak": decision.progress.current_streak,
            "longest_streak": decision.progress.longest_streak,
            "last_active_date": decision.progress.last_active_date,
        }

    old_row, new_row = _run_update(db, user_id, bump_streak)
    decision = evaluate_streak(UserProgress.from_row(old_row), today)
    new = UserProgress.from_row(new_row)
    if not decision.continued:
        logger.info("Streak reset for %s... (last active %s)", user_id[:8], old_row.get("last_active_date"))

    return {
        "current_streak": new.current_streak,
        "longest_streak": new.longest_streak,
        "streak_continued": decision.continued,
        "changed": decision.changed,
    }


# ── Cron ──────────────────────────────────────────────────────────────────────

@app.get("/api/cron/streak-warnings")
def streak_warnings(authorization: str = Header(default="")):
    secret = get_settings().cron_secret
    if not secret:
        logger.error("CRON_SECRET is not set; refusing cron request")
        raise HTTPException(status_code=403, detail="Cron is not configured")
    if not hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode()):
        logger.error("Unauthorized cron request")
        raise HTTPException(status_code=403, detail="Invalid cron secret")

    db = get_client()
    today = today_key()
    at_risk = []
    for row in list_streak_candidates(db):
        if is_streak_at_risk(UserProgress.from_row(row), today):
            at_risk.append({
                "user_id": row["user_id"],
                "email": row.get("email"),
                "display_name": row.get("display_name"),
                "current_streak": row.get("current_streak", 0),
            })

    logger.info("Streak warnings for %s: %d users at risk", today, len(at_risk))
    return {"date": today, "users": at_risk}


# ── Helpers ───────────────────────────────────────────────────────────────────

def _run_update(db, user_id: str, mutate) -> tuple[dict, dict]:
    try:
        return update_progress(db, user_id, mutate, max_attempts=get_settings().progress_max_attempts)
    except ProfileNotFoundError:
        raise HTTPException(status_code=404, detail="Profile not found")
    except ProgressConflictError as e:
        logger.error("Progress update conflict: %s", e)
        raise HTTPException(status_code=409, detail="Concurrent update, retry later")


def _build_stats(progress: UserProgress, levels, today: str) -> dict:
    level = resolve_level(progress.total_xp, levels)
    return {
        "total_xp": progress.total_xp,
        "current_level": level.current_level,
        "level_title": level.title,
        "level_title_localized": level.title_localized,
        "xp_into_level": level.xp_into_level,
        "xp_needed_for_level": level.xp_needed_for_level,
        "xp_to_next_level": level.xp_to_next_level,
        "progress_percent": level.progress_percent,
        "current_streak": progress.current_streak,
        "longest_streak": progress.longest_streak,
        "last_active_date": progress.last_active_date,
        "streak_at_risk": is_streak_at_risk(progress, today),
    }
