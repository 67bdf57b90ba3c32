from mathdash.engine.streak import (
    UserProgress, StreakUpdate, evaluate_streak, apply_streak_update, is_streak_at_risk,
)

TODAY = "2024-01-02"
YESTERDAY = "2024-01-01"


class TestApplyStreakUpdate:
    def test_first_activity_ever_starts_streak_at_1(self):
        result = apply_streak_update(UserProgress(), TODAY)
        assert result.current_streak == 1
        assert result.longest_streak == 1
        assert result.last_active_date == TODAY

    def test_consecutive_day_increments_streak(self):
        progress = UserProgress(current_streak=3, longest_streak=3, last_active_date=YESTERDAY)
        result = apply_streak_update(progress, TODAY)
        assert result.current_streak == 4
        assert result.longest_streak == 4

    def test_same_day_is_idempotent(self):
        progress = UserProgress(current_streak=5, longest_streak=7, last_active_date=TODAY)
        once = apply_streak_update(progress, TODAY)
        twice = apply_streak_update(once, TODAY)
        assert once == progress
        assert twice == progress

    def test_repeat_after_new_day_does_not_double_count(self):
        progress = UserProgress(current_streak=2, longest_streak=2, last_active_date=YESTERDAY)
        once = apply_streak_update(progress, TODAY)
        twice = apply_streak_update(once, TODAY)
        assert twice.current_streak == 3

    def test_gap_resets_streak_keeps_longest(self):
        progress = UserProgress(current_streak=10, longest_streak=10, last_active_date="2024-01-01")
        result = apply_streak_update(progress, "2024-01-05")
        assert result.current_streak == 1
        assert result.longest_streak == 10
        assert result.last_active_date == "2024-01-05"

    def test_clock_skew_resets_streak(self):
        progress = UserProgress(current_streak=4, longest_streak=6, last_active_date="2024-01-10")
        result = apply_streak_update(progress, "2024-01-09")
        assert result.current_streak == 1
        assert result.longest_streak == 6

    def test_malformed_stored_date_resets(self):
        progress = UserProgress(current_streak=4, longest_streak=4, last_active_date="not-a-date")
        result = apply_streak_update(progress, TODAY)
        assert result.current_streak == 1
        assert result.last_active_date == TODAY

    def test_consecutive_across_dst(self):
        progress = UserProgress(current_streak=1, longest_streak=1, last_active_date="2024-03-09")
        assert apply_streak_update(progress, "2024-03-10").current_streak == 2

    def test_total_xp_untouched(self):
        progress = UserProgress(total_xp=420, current_streak=1, longest_streak=1, last_active_date=YESTERDAY)
        assert apply_streak_update(progress, TODAY).total_xp == 420


class TestEvaluateStreak:
    def test_returns_streak_update(self):
        assert isinstance(evaluate_streak(UserProgress(), TODAY), StreakUpdate)

    def test_continued_flags(self):
        continued = evaluate_streak(UserProgress(current_streak=1, longest_streak=1, last_active_date=YESTERDAY), TODAY)
        assert continued.continued and continued.changed

        reset = evaluate_streak(UserProgress(current_streak=9, longest_streak=9, last_active_date="2023-12-01"), TODAY)
        assert not reset.continued and reset.changed

        same = evaluate_streak(UserProgress(current_streak=9, longest_streak=9, last_active_date=TODAY), TODAY)
        assert same.continued and not same.changed

    def test_first_activity_counts_as_continued(self):
        assert evaluate_streak(UserProgress(), TODAY).continued


class TestStreakAtRisk:
    def test_running_streak_without_activity_today(self):
        assert is_streak_at_risk(UserProgress(current_streak=3, last_active_date=YESTERDAY), TODAY)

    def test_active_today_is_safe(self):
        assert not is_streak_at_risk(UserProgress(current_streak=3, last_active_date=TODAY), TODAY)

    def test_no_streak_no_risk(self):
        assert not is_streak_at_risk(UserProgress(), TODAY)


class TestUserProgressRows:
    def test_from_row_defaults(self):
        assert UserProgress.from_row({}) == UserProgress()

    def test_from_row_normalizes_timestamp(self):
        row = {"total_xp": 10, "current_streak": 2, "longest_streak": 5,
               "last_active_date": "2024-01-01T09:15:00+00:00"}
        progress = UserProgress.from_row(row)
        assert progress.last_active_date == "2024-01-01"
        assert progress.longest_streak == 5

    def test_from_row_normalizes_space_separated_timestamp(self):
        progress = UserProgress.from_row({"last_active_date": "2024-01-01 09:15:00+00"})
        assert progress.last_active_date == "2024-01-01"

    def test_from_row_drops_junk_date(self):
        assert UserProgress.from_row({"last_active_date": "2024-01-01junk"}).last_active_date is None
        assert UserProgress.from_row({"last_active_date": "2024-W01-1"}).last_active_date is None

    def test_from_row_null_columns(self):
        row = {"total_xp": None, "current_streak": None, "longest_streak": None, "last_active_date": None}
        assert UserProgress.from_row(row) == UserProgress()

    def test_to_row_roundtrip_keys(self):
        row = UserProgress(total_xp=7, current_streak=1, longest_streak=1, last_active_date=TODAY).to_row()
        assert row == {"total_xp": 7, "current_streak": 1, "longest_streak": 1, "last_active_date": TODAY}
