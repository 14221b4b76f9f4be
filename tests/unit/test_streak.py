"""
Unit Tests for Hint-Free Streak

Tests streak increments, resets on hints and completion at 100.
"""

import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor import streak
from socratic_math_tutor.session_state import Session, Step


def make_session(progress=0):
    return Session(session_code="AB12CD", created_at="2025-01-01T00:00:00+00:00",
                   expires_at=0, streak_progress=progress)


class TestStreak:
    """Test suite for streak updates."""

    def test_progress_without_hint_increments(self):
        session = make_session()
        update = streak.apply_step(session, Step(tutor_prompt="Q", progress_made=True))

        assert session.streak_progress == 20
        assert update.previous_progress == 0
        assert streak.feedback_for(update) == streak.MILESTONE_MESSAGES[20]

    def test_no_progress_keeps_streak(self):
        session = make_session(40)
        update = streak.apply_step(session, Step(tutor_prompt="Q"))
        assert session.streak_progress == 40
        assert streak.feedback_for(update) is None

    def test_hint_resets(self):
        session = make_session(60)
        update = streak.apply_step(session, Step(tutor_prompt="Q", hint_used=True, progress_made=True))

        assert session.streak_progress == 0
        assert update.reset is True
        assert streak.feedback_for(update) == streak.RESET_MESSAGE

    def test_hint_at_zero_is_not_a_reset(self):
        session = make_session()
        update = streak.apply_step(session, Step(tutor_prompt="Q", hint_used=True))
        assert update.reset is False
        assert streak.feedback_for(update) is None

    def test_completion_at_target(self):
        """Test that the fifth hint-free progress step completes the streak."""
        session = make_session()
        for _ in range(4):
            streak.apply_step(session, Step(tutor_prompt="Q", progress_made=True))
        assert session.streak_progress == 80

        update = streak.apply_step(session, Step(tutor_prompt="Q", progress_made=True))

        assert update.completed is True
        assert session.streak_progress == 0
        assert session.streak_completions == 1
        assert session.streak_completed is True
        assert streak.feedback_for(update) == streak.COMPLETED_MESSAGE
