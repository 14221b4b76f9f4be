"""
Session Manager for State Persistence

Stores tutoring sessions in the Supabase `sessions` table (one row per
session code, problems and transcript as JSON columns). Without a
Supabase client the sessions live in process memory, which is what the
tests and local development use.
"""

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple

from socratic_math_tutor import streak
from socratic_math_tutor.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from socratic_math_tutor.session_code import generate_session_code, validate_session_code
from socratic_math_tutor.session_state import (
    Problem,
    Session,
    Step,
    TranscriptEntry,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages session persistence.

    Every mutating operation loads the session, applies the change and
    writes the whole row back, so callers always get the stored state.
    """

    SESSION_TTL_DAYS = 30
    MAX_CODE_ATTEMPTS = 5

    def __init__(self, supabase_client=None, table_name: str = "sessions"):
        """
        Args:
            supabase_client: Supabase client instance (optional)
            table_name: Table holding session rows
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.table_name = table_name
        self._in_memory_sessions: Dict[str, Dict[str, Any]] = {}

    # ==================== Raw row access ====================

    def _fetch_row(self, session_code: str) -> Optional[Dict[str, Any]]:
        if not self.use_supabase:
            row = self._in_memory_sessions.get(session_code)
            return copy.deepcopy(row) if row else None
        try:
            result = self.supabase.table(self.table_name) \
                .select('*') \
                .eq('session_code', session_code) \
                .execute()
        except Exception as e:
            raise StorageError("Failed to get session", e) from e
        return result.data[0] if result.data else None

    def _insert_row(self, row: Dict[str, Any]) -> None:
        if not self.use_supabase:
            self._in_memory_sessions[row["session_code"]] = copy.deepcopy(row)
            return
        try:
            self.supabase.table(self.table_name).insert(row).execute()
        except Exception as e:
            raise StorageError(f"Failed to create session: {e}", e) from e

    def _update_row(self, session_code: str, fields: Dict[str, Any]) -> None:
        if not self.use_supabase:
            self._in_memory_sessions[session_code].update(copy.deepcopy(fields))
            return
        try:
            self.supabase.table(self.table_name) \
                .update(fields) \
                .eq('session_code', session_code) \
                .execute()
        except Exception as e:
            raise StorageError("Failed to update session", e) from e

    def _delete_row(self, session_code: str) -> None:
        if not self.use_supabase:
            self._in_memory_sessions.pop(session_code, None)
            return
        try:
            self.supabase.table(self.table_name).delete().eq('session_code', session_code).execute()
        except Exception as e:
            raise StorageError("Failed to delete session", e) from e

    def _fetch_all_rows(self) -> List[Dict[str, Any]]:
        if not self.use_supabase:
            return [copy.deepcopy(row) for row in self._in_memory_sessions.values()]
        try:
            result = self.supabase.table(self.table_name).select('*').execute()
        except Exception as e:
            raise StorageError("Failed to retrieve sessions", e) from e
        return result.data or []

    # ==================== Session operations ====================

    async def create_session(self, session_code: Optional[str] = None) -> Session:
        """
        Create a new session.

        Args:
            session_code: Explicit code to use; generated when omitted

        Returns:
            The stored Session
        """
        if session_code is not None:
            if not validate_session_code(session_code):
                raise ValidationError("Invalid session code format", "session_code")
            if self._fetch_row(session_code):
                raise ConflictError(f"Session {session_code} already exists")
            code = session_code
        else:
            code = None
            for _ in range(self.MAX_CODE_ATTEMPTS):
                candidate = generate_session_code()
                if not self._fetch_row(candidate):
                    code = candidate
                    break
            if code is None:
                raise StorageError("Could not allocate a unique session code")

        now = datetime.now(timezone.utc)
        session = Session(
            session_code=code,
            created_at=now.isoformat(),
            expires_at=int((now + timedelta(days=self.SESSION_TTL_DAYS)).timestamp()),
        )
        self._insert_row(session.to_dict())
        logger.info(f"Session created: {code}")
        return session

    async def get_session(self, session_code: str) -> Session:
        """
        Load a session by code.

        Raises:
            ValidationError: malformed code
            NotFoundError: unknown or expired session
        """
        if not validate_session_code(session_code):
            raise ValidationError("Invalid session code format", "session_code")

        row = self._fetch_row(session_code)
        if not row:
            raise NotFoundError("Session")

        session = Session.from_dict(row)
        if session.is_expired():
            raise NotFoundError("Session")
        return session

    async def save_session(self, session: Session) -> Session:
        """Write every mutable field of the session back to the store."""
        data = session.to_dict()
        data.pop("session_code")
        data.pop("created_at")
        self._update_row(session.session_code, data)
        logger.debug(f"Session updated: {session.session_code}")
        return session

    async def update_session(self, session_code: str, **fields) -> Session:
        """Update selected top-level fields of an existing session."""
        session = await self.get_session(session_code)
        for key, value in fields.items():
            if not hasattr(session, key) or key == "session_code":
                raise ValidationError(f"Unknown session field: {key}", key)
            setattr(session, key, value)
        return await self.save_session(session)

    async def add_problem(self, session_code: str, problem: Problem) -> Session:
        """
        Add a problem and make it the current one.

        Only one problem may be active at a time.
        """
        session = await self.get_session(session_code)

        if any(not p.completed for p in session.problems):
            raise ConflictError(
                "A problem is already active in this session. Complete it before starting a new one."
            )

        problem.problem_id = f"P{len(session.problems) + 1:03d}"
        problem.completed = False
        problem.created_at = utc_now_iso()

        session.problems.append(problem)
        session.current_problem_id = problem.problem_id
        return await self.save_session(session)

    async def add_step(self, session_code: str, step: Step) -> Tuple[Session, streak.StreakUpdate]:
        """
        Append a step to the current problem and update the streak.

        Returns:
            (stored session, streak change caused by this step)
        """
        session = await self.get_session(session_code)

        if not session.current_problem_id:
            raise ValidationError("No active problem in this session", "session")

        problem = session.find_problem(session.current_problem_id)
        if not problem:
            raise NotFoundError("Current problem")
        if problem.completed:
            raise ConflictError("This problem is already completed")

        step.step_number = len(problem.steps) + 1
        step.timestamp = utc_now_iso()
        problem.steps.append(step)

        if step.hint_used:
            problem.hints_used_total += 1

        update = streak.apply_step(session, step)
        return await self.save_session(session), update

    async def add_to_transcript(self, session_code: str, speaker: str, message: str) -> Session:
        if speaker not in ("student", "tutor"):
            raise ValidationError(f"Unknown speaker: {speaker}", "speaker")
        session = await self.get_session(session_code)
        session.transcript.append(TranscriptEntry(speaker=speaker, message=message))
        return await self.save_session(session)

    async def delete_session(self, session_code: str) -> None:
        await self.get_session(session_code)
        self._delete_row(session_code)
        logger.info(f"Session deleted: {session_code}")

    async def list_sessions(self) -> List[Session]:
        """All sessions that have not expired."""
        sessions = [Session.from_dict(row) for row in self._fetch_all_rows()]
        active = [s for s in sessions if not s.is_expired()]
        logger.info(f"Retrieved {len(active)} active sessions")
        return active
