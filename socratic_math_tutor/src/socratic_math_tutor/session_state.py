"""
Session State Data Model

Dataclasses for tutoring sessions, the problems submitted in them, the
Socratic steps taken on each problem and the session transcript.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Step:
    """One tutor prompt / student response pair on a problem."""
    tutor_prompt: Optional[str]
    student_response: Optional[str] = None
    hint_used: bool = False
    progress_made: bool = False
    stuck_turns: int = 0
    step_number: int = 0  # Assigned by SessionManager.add_step
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            tutor_prompt=data.get("tutor_prompt"),
            student_response=data.get("student_response"),
            hint_used=bool(data.get("hint_used", False)),
            progress_made=bool(data.get("progress_made", False)),
            stuck_turns=int(data.get("stuck_turns") or 0),
            step_number=int(data.get("step_number") or 0),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class TranscriptEntry:
    speaker: str  # "student" or "tutor"
    message: str
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            speaker=data["speaker"],
            message=data.get("message", ""),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class MCQuestion:
    """Multiple choice question about the approach used on a solved problem."""
    question_id: str
    question: str
    options: List[str]
    correct_answer_index: int
    student_answer_index: Optional[int] = None
    correct: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MCQuestion":
        return cls(
            question_id=data["question_id"],
            question=data["question"],
            options=list(data.get("options") or []),
            correct_answer_index=int(data["correct_answer_index"]),
            student_answer_index=data.get("student_answer_index"),
            correct=data.get("correct"),
        )


@dataclass
class TransferProblem:
    problem_text: str
    approach: str
    original_problem_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferProblem":
        return cls(
            problem_text=data["problem_text"],
            approach=data.get("approach", ""),
            original_problem_id=data.get("original_problem_id"),
        )


@dataclass
class LearningAssessment:
    """Post-solution check: MC quiz plus optional transfer problem."""
    approach_extracted: str
    mc_questions: List[MCQuestion] = field(default_factory=list)
    mc_score: Optional[float] = None
    transfer_problem: Optional[TransferProblem] = None
    transfer_success: Optional[bool] = None
    transfer_answer: Optional[str] = None
    learning_confidence: Optional[float] = None
    assessment_completed: bool = False
    mc_quiz_failed: bool = False
    mc_quiz_failed_at: Optional[str] = None
    assessed_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningAssessment":
        transfer = data.get("transfer_problem")
        return cls(
            approach_extracted=data.get("approach_extracted", ""),
            mc_questions=[MCQuestion.from_dict(q) for q in data.get("mc_questions") or []],
            mc_score=data.get("mc_score"),
            transfer_problem=TransferProblem.from_dict(transfer) if transfer else None,
            transfer_success=data.get("transfer_success"),
            transfer_answer=data.get("transfer_answer"),
            learning_confidence=data.get("learning_confidence"),
            assessment_completed=bool(data.get("assessment_completed", False)),
            mc_quiz_failed=bool(data.get("mc_quiz_failed", False)),
            mc_quiz_failed_at=data.get("mc_quiz_failed_at"),
            assessed_at=data.get("assessed_at") or utc_now_iso(),
        )


@dataclass
class Problem:
    raw_input: str
    normalized_latex: str
    category: str
    difficulty: str
    problem_id: Optional[str] = None  # Assigned by SessionManager.add_problem
    completed: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    steps: List[Step] = field(default_factory=list)
    hints_used_total: int = 0
    image_key: Optional[str] = None
    image_url: Optional[str] = None
    ocr_confidence: Optional[float] = None
    learning_assessment: Optional[LearningAssessment] = None

    def info(self) -> Dict[str, Any]:
        """Summary returned to the client alongside tutor messages."""
        return {
            "problem_id": self.problem_id,
            "category": self.category,
            "difficulty": self.difficulty,
            "normalized_latex": self.normalized_latex or None,
            "image_url": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Problem":
        assessment = data.get("learning_assessment")
        return cls(
            raw_input=data.get("raw_input", ""),
            normalized_latex=data.get("normalized_latex") or data.get("raw_input", ""),
            category=data.get("category", "other"),
            difficulty=data.get("difficulty", "unknown"),
            problem_id=data.get("problem_id"),
            completed=bool(data.get("completed", False)),
            created_at=data.get("created_at") or utc_now_iso(),
            steps=[Step.from_dict(s) for s in data.get("steps") or []],
            hints_used_total=int(data.get("hints_used_total") or 0),
            image_key=data.get("image_key"),
            image_url=data.get("image_url"),
            ocr_confidence=data.get("ocr_confidence"),
            learning_assessment=LearningAssessment.from_dict(assessment) if assessment else None,
        )


@dataclass
class Session:
    """A tutoring session identified by a short code."""
    session_code: str
    created_at: str
    expires_at: int  # Unix seconds
    problems: List[Problem] = field(default_factory=list)
    transcript: List[TranscriptEntry] = field(default_factory=list)
    current_problem_id: Optional[str] = None
    # Hint-free progress streak (0-100 in steps of 20)
    streak_progress: int = 0
    streak_completions: int = 0
    streak_completed: bool = False

    def find_problem(self, problem_id: Optional[str]) -> Optional[Problem]:
        if not problem_id:
            return None
        for problem in self.problems:
            if problem.problem_id == problem_id:
                return problem
        return None

    @property
    def current_problem(self) -> Optional[Problem]:
        """The active (not completed) problem, if any."""
        problem = self.find_problem(self.current_problem_id)
        if problem and not problem.completed:
            return problem
        return None

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = now if now is not None else datetime.now(timezone.utc).timestamp()
        return bool(self.expires_at) and self.expires_at < int(now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_view(self) -> Dict[str, Any]:
        """Public representation returned by the session endpoints."""
        data = self.to_dict()
        return {
            "session_code": self.session_code,
            "created_at": self.created_at,
            "problems": data["problems"],
            "current_problem_id": self.current_problem_id,
            "transcript": data["transcript"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            session_code=data["session_code"],
            created_at=data.get("created_at") or utc_now_iso(),
            expires_at=int(data.get("expires_at") or 0),
            problems=[Problem.from_dict(p) for p in data.get("problems") or []],
            transcript=[TranscriptEntry.from_dict(t) for t in data.get("transcript") or []],
            current_problem_id=data.get("current_problem_id"),
            streak_progress=int(data.get("streak_progress") or 0),
            streak_completions=int(data.get("streak_completions") or 0),
            streak_completed=bool(data.get("streak_completed", False)),
        )
