"""
Teacher Dashboard

Password login with signed bearer tokens, session statistics and problem
tag overrides.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from socratic_math_tutor.errors import AppError, AuthError, NotFoundError, ValidationError
from socratic_math_tutor.image_service import ImageService
from socratic_math_tutor.problem_processor import CATEGORIES, DIFFICULTIES
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_state import Session

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=24)
TOKEN_TYPE = "dashboard"


def _token_secret() -> str:
    return os.getenv("SESSION_SECRET", "default-secret-change-in-production")


def create_dashboard_token(password: str) -> Dict[str, Any]:
    """
    Check the dashboard password and issue a token.

    Returns:
        {"success": True, "token": str, "expiresIn": milliseconds}
    """
    expected = os.getenv("DASHBOARD_PASSWORD")
    if not expected:
        logger.error("DASHBOARD_PASSWORD not set in environment variables")
        raise AppError("Dashboard authentication not configured", 500, "CONFIG_ERROR")

    if not password:
        raise ValidationError("Password is required", "password")

    # compare_digest only accepts ASCII str, so compare the UTF-8 bytes
    if not secrets.compare_digest(password.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Dashboard login failed: invalid password")
        raise AuthError("Invalid password")

    now = datetime.now(timezone.utc)
    claims = {"type": TOKEN_TYPE, "iat": now, "exp": now + TOKEN_TTL}
    token = jwt.encode(claims, _token_secret(), algorithm=TOKEN_ALGORITHM)

    logger.info("Dashboard login successful")
    return {
        "success": True,
        "token": token,
        "expiresIn": int(TOKEN_TTL.total_seconds() * 1000),
    }


def verify_dashboard_token(token: str) -> Dict[str, Any]:
    """
    Raises:
        AuthError: for malformed, expired or foreign tokens
    """
    try:
        claims = jwt.decode(token, _token_secret(), algorithms=[TOKEN_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        raise AuthError("Invalid or expired token", "AUTH_INVALID") from e

    if claims.get("type") != TOKEN_TYPE:
        raise AuthError("Invalid or expired token", "AUTH_INVALID")
    return claims


def _category_of(problem) -> str:
    return problem.category if problem.category in CATEGORIES else "other"


def _difficulty_of(problem) -> str:
    return problem.difficulty if problem.difficulty in DIFFICULTIES else "unknown"


class DashboardService:
    """Read and override views over all stored sessions."""

    def __init__(self, session_manager: SessionManager, image_service: Optional[ImageService] = None):
        self.session_manager = session_manager
        self.image_service = image_service

    async def get_aggregate_stats(self) -> Dict[str, Any]:
        sessions = await self.session_manager.list_sessions()
        stats = {
            "totalSessions": len(sessions),
            "totalProblems": 0,
            "totalHints": 0,
            "categories": {category: 0 for category in CATEGORIES},
            "difficulties": {difficulty: 0 for difficulty in DIFFICULTIES},
        }

        for session in sessions:
            for problem in session.problems:
                stats["totalProblems"] += 1
                stats["totalHints"] += problem.hints_used_total
                stats["categories"][_category_of(problem)] += 1
                stats["difficulties"][_difficulty_of(problem)] += 1

        return stats

    async def get_sessions_with_stats(self) -> List[Dict[str, Any]]:
        sessions = await self.session_manager.list_sessions()
        return [self._session_stats(session) for session in sessions]

    @staticmethod
    def _session_stats(session: Session) -> Dict[str, Any]:
        categories: Dict[str, int] = {}
        difficulties: Dict[str, int] = {}
        hints_total = 0

        for problem in session.problems:
            hints_total += problem.hints_used_total
            category = _category_of(problem)
            difficulty = _difficulty_of(problem)
            categories[category] = categories.get(category, 0) + 1
            difficulties[difficulty] = difficulties.get(difficulty, 0) + 1

        return {
            "session_code": session.session_code,
            "created_at": session.created_at,
            "problems_count": len(session.problems),
            "hints_used_total": hints_total,
            "categories": categories,
            "difficulties": difficulties,
            "needs_attention": any(
                p.learning_assessment is not None and p.learning_assessment.mc_quiz_failed
                for p in session.problems
            ),
            "problems": [
                {
                    "problem_id": p.problem_id,
                    "category": _category_of(p),
                    "difficulty": _difficulty_of(p),
                    "hints_used": p.hints_used_total,
                    "created_at": p.created_at,
                    "completed": p.completed,
                }
                for p in session.problems
            ],
        }

    async def get_session_details(self, session_code: str) -> Dict[str, Any]:
        session = await self.session_manager.get_session(session_code)
        data = session.to_dict()
        return {
            "session_code": session.session_code,
            "created_at": session.created_at,
            "expires_at": session.expires_at,
            "current_problem_id": session.current_problem_id,
            "problems": data["problems"],
            "transcript": data["transcript"],
            "transcript_length": len(session.transcript),
            "streak_progress": session.streak_progress,
            "streak_completions": session.streak_completions,
        }

    async def update_problem_tags(
        self,
        session_code: str,
        problem_id: str,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Teacher override of a problem's category and/or difficulty."""
        if not category and not difficulty:
            raise ValidationError("At least one of category or difficulty must be provided")
        if category and category not in CATEGORIES:
            raise ValidationError(f"Invalid category. Must be one of: {', '.join(CATEGORIES)}", "category")
        if difficulty and difficulty not in DIFFICULTIES:
            raise ValidationError(f"Invalid difficulty. Must be one of: {', '.join(DIFFICULTIES)}", "difficulty")

        session = await self.session_manager.get_session(session_code)
        problem = session.find_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem")

        if category:
            problem.category = category
        if difficulty:
            problem.difficulty = difficulty

        await self.session_manager.save_session(session)
        logger.info(f"Updated problem {problem_id} tags in session {session_code}")

        updated = next(p for p in session.to_dict()["problems"] if p["problem_id"] == problem_id)
        return {"success": True, "problem": updated}

    async def delete_session(self, session_code: str) -> Dict[str, Any]:
        """Delete a session together with the images uploaded for its problems."""
        session = await self.session_manager.get_session(session_code)
        if self.image_service is not None:
            await self.image_service.delete_images([p.image_key for p in session.problems if p.image_key])
        await self.session_manager.delete_session(session_code)
        logger.info(f"Session {session_code} deleted by dashboard user")
        return {"success": True, "message": "Session deleted successfully"}
