from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional

from .engine.xp import BASE_XP, MODE_MULTIPLIER, XP_SOURCES, question_xp


class ProfileCreate(BaseModel):
    email: Optional[str] = Field(default=None, max_length=320)
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    model_config = {"extra": "ignore"}


class XpAwardRequest(BaseModel):
    # Either a raw amount, or a question difficulty (and mode) priced by the XP rules
    amount: Optional[int] = Field(default=None, gt=0, le=1000)
    difficulty: Optional[str] = None
    mode: str = "practice"
    source: str = "question"
    # Client-generated id for this award; a retried request with the same key is ignored
    idempotency_key: Optional[str] = Field(default=None, max_length=200)
    model_config = {"extra": "ignore"}

    @field_validator("source")
    @classmethod
    def validate_source(cls, v):
        if v not in XP_SOURCES:
            raise ValueError(f"source must be one of {', '.join(XP_SOURCES)}")
        return v

    @field_validator("difficulty")
    @classmethod
    def validate_difficulty(cls, v):
        if v is not None and v not in BASE_XP:
            raise ValueError(f"difficulty must be one of {', '.join(BASE_XP)}")
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        if v not in MODE_MULTIPLIER:
            raise ValueError(f"mode must be one of {', '.join(MODE_MULTIPLIER)}")
        return v

    @model_validator(mode="after")
    def require_amount_or_difficulty(self):
        if self.amount is None and self.difficulty is None:
            raise ValueError("either amount or difficulty is required")
        return self

    def xp_amount(self) -> int:
        if self.amount is not None:
            return self.amount
        return question_xp(self.difficulty, self.mode)


class GamificationStats(BaseModel):
    total_xp: int
    current_level: int
    level_title: str
    level_title_localized: str
    xp_into_level: int
    xp_needed_for_level: int
    xp_to_next_level: int
    progress_percent: int
    current_streak: int
    longest_streak: int
    last_active_date: Optional[str] = None
    streak_at_risk: bool = False


class XpAwardResult(BaseModel):
    status: str
    xp_awarded: int
    total_xp: int
    current_level: int
    leveled_up: bool
    current_streak: int
    longest_streak: int
    streak_continued: Optional[bool] = None  # None for a duplicate award


class StreakResult(BaseModel):
    current_streak: int
    longest_streak: int
    streak_continued: bool
    changed: bool
