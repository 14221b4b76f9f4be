"""
Hint-Free Progress Streak

Rewards students for making progress without hints:
- progress without a hint  -> +20
- any hinted step          -> reset to 0
- reaching 100             -> one completion, celebration flag, back to 0
"""

from dataclasses import dataclass
from typing import Optional

from socratic_math_tutor.session_state import Session, Step

STREAK_INCREMENT = 20
STREAK_TARGET = 100

MILESTONE_MESSAGES = {
    20: "Great start! Your streak is building! 🌟",
    40: "You're halfway there! Keep going! ⭐",
    60: "You're doing great! Keep it up! 🔥",
    80: "Almost there! One more step! 💫",
}
RESET_MESSAGE = "Your streak was reset because you used a hint. Keep working without hints to build it back up! 💪"
COMPLETED_MESSAGE = "🎉 Amazing! You completed your streak! You're making great progress without hints!"


@dataclass
class StreakUpdate:
    previous_progress: int
    progress: int
    completions: int
    completed: bool
    reset: bool


def apply_step(session: Session, step: Step) -> StreakUpdate:
    """Update the session's streak fields for a newly recorded step."""
    previous = session.streak_progress
    reset = False
    completed = False

    if step.hint_used:
        reset = previous > 0
        session.streak_progress = 0
    elif step.progress_made:
        session.streak_progress = previous + STREAK_INCREMENT
        if session.streak_progress >= STREAK_TARGET:
            session.streak_completions += 1
            session.streak_completed = True
            session.streak_progress = 0
            completed = True

    return StreakUpdate(
        previous_progress=previous,
        progress=session.streak_progress,
        completions=session.streak_completions,
        completed=completed,
        reset=reset,
    )


def feedback_for(update: StreakUpdate) -> Optional[str]:
    """Encouragement text for the chat response, if the streak changed notably."""
    if update.reset:
        return RESET_MESSAGE
    if update.completed:
        return COMPLETED_MESSAGE
    if update.progress > update.previous_progress:
        return MILESTONE_MESSAGES.get(update.progress)
    return None
