"""
Math Tutor Orchestration

MathTutor ties the session store, problem intake, Socratic engine,
learning assessment, image handling and similar-problem search together
into the flows behind the HTTP endpoints. Each public method returns the
JSON payload for one endpoint.
"""

import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from socratic_math_tutor import streak
from socratic_math_tutor.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    ProblemRejectedError,
    ValidationError,
)
from socratic_math_tutor.image_service import (
    ImageService,
    VERIFY_BELOW_CONFIDENCE,
    VISION_CONFIDENCE,
    validate_image,
)
from socratic_math_tutor.learning_assessment import (
    LearningAssessor,
    record_mc_answer,
    record_transfer_result,
)
from socratic_math_tutor.problem_processor import ProblemProcessor
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_state import Problem, Session, Step
from socratic_math_tutor.similarity import SimilarityService
from socratic_math_tutor.socratic_engine import SocraticEngine

logger = logging.getLogger(__name__)


class MathTutor:
    """Session, problem and chat flows for one tutoring backend."""

    def __init__(
        self,
        llm_client: AsyncOpenAI,
        session_manager: Optional[SessionManager] = None,
        supabase_client=None,
    ):
        self.llm_client = llm_client
        self.sessions = session_manager or SessionManager(supabase_client)
        self.processor = ProblemProcessor(llm_client)
        self.engine = SocraticEngine(llm_client)
        self.assessor = LearningAssessor(llm_client)
        self.images = ImageService(llm_client, supabase_client)
        self.similarity = SimilarityService(llm_client, self.sessions)

    # ==================== Sessions ====================

    async def create_or_resume_session(self, session_code: Optional[str] = None) -> Dict[str, Any]:
        """
        Resume an existing session or start a new one.

        Returns:
            {"created": bool, "session": session view}
        """
        if session_code:
            try:
                session = await self.sessions.get_session(session_code)
                logger.info(f"Session resumed: {session_code}")
                return {"created": False, "session": session.to_view()}
            except NotFoundError:
                logger.warning(f"Session {session_code} not found, creating new session")

        session = await self.sessions.create_session()
        return {"created": True, "session": session.to_view()}

    async def get_session_view(self, session_code: str) -> Dict[str, Any]:
        session = await self.sessions.get_session(session_code)
        return session.to_view()

    # ==================== Problem submission ====================

    async def submit_problem(
        self,
        session_code: str,
        text: Optional[str] = None,
        image: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Accept a typed or photographed problem.

        Args:
            image: {"data": bytes, "filename": str, "content_type": str}

        Returns:
            The opening tutor turn, or {"multiple_problems": True, ...}
            when the input holds several problems to choose from.
        """
        session = await self.sessions.get_session(session_code)
        self._ensure_no_active_problem(session)

        raw_text = (text or "").strip()
        if not raw_text and not image:
            raise ValidationError("Either text or image file must be provided", "input")

        fallback = {"type": "manual_input", "session_code": session_code}
        image_info = None
        ocr_confidence = None

        if image:
            validate_image(image.get("content_type"), len(image["data"]))
            image_info = await self.images.store_image(
                image["data"], image.get("filename") or "upload.png", image["content_type"]
            )
            fallback["image_url"] = image_info["url"]

            try:
                ocr = await self.images.extract_text_from_image(image["data"], image["content_type"])
            except AppError as e:
                logger.error(f"Error processing image: {e}")
                raise ProblemRejectedError(
                    "image_processing_error",
                    "Error processing image. Please try again or type the problem manually.",
                    fallback,
                ) from e

            if ocr["no_math_problem"]:
                raise ProblemRejectedError(
                    "no_math_problem",
                    "This image doesn't appear to contain a math problem. Please upload an image "
                    "with a math problem or type it manually.",
                    fallback,
                )
            if not ocr["success"] or not ocr["text"]:
                raise ProblemRejectedError(
                    "image_processing_failed",
                    "I couldn't read the problem from the image. Please type it out or try a clearer photo.",
                    fallback,
                )
            raw_text = ocr["text"]
            ocr_confidence = ocr["confidence"]
        elif not await self.processor.has_math_problem(raw_text):
            raise ProblemRejectedError(
                "no_math_problem",
                "This doesn't appear to be a math problem. Please provide a valid math problem.",
                fallback,
            )

        detection = await self.processor.detect_multiple_problems(raw_text)
        if detection["is_multiple"] and len(detection["problems"]) >= 2:
            validation = await self.processor.validate_multiple_problems(detection["problems"])
            if not validation["valid_problems"]:
                raise ProblemRejectedError(
                    "invalid_problems",
                    "The extracted problems don't appear to be valid math problems. "
                    "Please try typing the problem manually.",
                    fallback,
                    invalidProblems=validation["invalid_problems"],
                )

            response = {
                "multiple_problems": True,
                "problems": validation["valid_problems"],
                "image_url": image_info["url"] if image_info else None,
                "image_key": image_info["key"] if image_info else None,
                "session_code": session_code,
            }
            if validation["invalid_problems"]:
                response["invalidProblems"] = validation["invalid_problems"]
            return response

        problem_text = detection["problems"][0] if detection["problems"] else raw_text
        validation = await self.processor.validate_problem(problem_text)
        if not validation["valid"]:
            raise ProblemRejectedError(
                "invalid_problem",
                validation["reason"] or "This doesn't appear to be a valid, complete math problem.",
                fallback,
            )

        return await self._start_problem(
            session_code,
            problem_text,
            transcript_text=raw_text,
            image_key=image_info["key"] if image_info else None,
            image_url=image_info["url"] if image_info else None,
            ocr_confidence=ocr_confidence,
        )

    async def select_problem(
        self,
        session_code: str,
        problem_text: Optional[str],
        image_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start one of several problems detected in a submission."""
        problem_text = (problem_text or "").strip()
        if not problem_text:
            raise ValidationError("Problem text is required", "problemText")

        session = await self.sessions.get_session(session_code)
        self._ensure_no_active_problem(session)

        validation = await self.processor.validate_problem(problem_text)
        if not validation["valid"]:
            raise ProblemRejectedError(
                "invalid_problem",
                validation["reason"] or "The selected problem is not valid.",
                {"type": "manual_input", "session_code": session_code},
            )

        return await self._start_problem(
            session_code,
            problem_text,
            transcript_text=problem_text,
            image_key=image_key,
            image_url=self.images.image_url_for(image_key) if image_key else None,
        )

    @staticmethod
    def _ensure_no_active_problem(session: Session) -> None:
        if session.current_problem is not None:
            raise ConflictError(
                "A problem is already active in this session. Complete it before starting a new one."
            )

    async def _start_problem(
        self,
        session_code: str,
        problem_text: str,
        transcript_text: str,
        image_key: Optional[str] = None,
        image_url: Optional[str] = None,
        ocr_confidence: Optional[float] = None,
    ) -> Dict[str, Any]:
        processed = await self.processor.process_problem(problem_text)
        problem = Problem(
            raw_input=processed["raw_input"],
            normalized_latex=processed["normalized_latex"],
            category=processed["category"],
            difficulty=processed["difficulty"],
            image_key=image_key,
            image_url=image_url,
            ocr_confidence=ocr_confidence,
        )

        # The problem is only stored once the opening prompt exists, so a
        # failed tutor call leaves the session free for a resubmission
        tutor_prompt = await self.engine.generate_initial_prompt(problem)

        session = await self.sessions.add_problem(session_code, problem)
        current = session.current_problem

        await self.sessions.add_to_transcript(session_code, "student", transcript_text)
        await self.sessions.add_to_transcript(session_code, "tutor", tutor_prompt)
        await self.sessions.add_step(session_code, Step(tutor_prompt=tutor_prompt))

        logger.info(f"Problem {current.problem_id} started in session {session_code}")
        return {
            "session_code": session_code,
            "problem_id": current.problem_id,
            "tutor_message": tutor_prompt,
            "conversation_context": {
                "step_number": 1,
                "hints_used": 0,
                "progress_made": False,
            },
            "problem_info": current.info(),
        }

    # ==================== Chat ====================

    async def chat(
        self,
        session_code: str,
        message: Optional[str] = None,
        mc_answer: Optional[int] = None,
        question_id: Optional[str] = None,
        transfer_answer: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Route a chat request to the quiz, transfer or Socratic turn flow."""
        session = await self.sessions.get_session(session_code)

        if transfer_answer is not None:
            return await self._handle_transfer_answer(session, transfer_answer)

        problem = session.current_problem
        if problem is None:
            raise ValidationError(
                "No active problem in this session. Please submit a problem first.", "session"
            )

        if mc_answer is not None and question_id:
            return await self._handle_mc_answer(session, problem, question_id, mc_answer)

        message = (message or "").strip()
        if not message:
            raise ValidationError("Message cannot be empty", "message")

        return await self._handle_student_message(session, problem, message)

    async def _handle_student_message(self, session: Session, problem: Problem, message: str) -> Dict[str, Any]:
        session_code = session.session_code
        previous_steps = list(problem.steps)

        result = await self.engine.process_student_response(message, problem, previous_steps)
        step: Step = result["step"]

        correction = await self._verify_image_problem(session, problem)
        if correction:
            regenerated = await self.engine.generate_tutor_response(
                problem.raw_input,
                problem.normalized_latex,
                problem.category,
                student_response=message,
                conversation_history=previous_steps,
                should_provide_hint=step.hint_used,
                correction=correction,
            )
            step.tutor_prompt = regenerated["message"]

        session, update = await self.sessions.add_step(session_code, step)
        await self.sessions.add_to_transcript(session_code, "student", message)
        session = await self.sessions.add_to_transcript(session_code, "tutor", step.tutor_prompt)
        problem = session.find_problem(problem.problem_id)

        verdict = await self.engine.detect_solution_completion(message, problem, previous_steps)

        assessment_payload = None
        if verdict["solution_completed"] and verdict["is_correct"]:
            if problem.learning_assessment is None or not problem.learning_assessment.assessment_completed:
                problem.learning_assessment = await self.assessor.start_assessment(problem)
                assessment_payload = {
                    "triggered": True,
                    "mc_questions": [vars(q).copy() for q in problem.learning_assessment.mc_questions],
                    "current_question_index": 0,
                }
                logger.info(f"MC quiz triggered for {problem.problem_id}: solution completed and correct")

        streak_completed = session.streak_completed
        # The completion celebration is reported exactly once
        session.streak_completed = False
        await self.sessions.save_session(session)

        response = {
            "session_code": session_code,
            "tutor_message": step.tutor_prompt,
            "conversation_context": {
                "step_number": len(problem.steps),
                "hints_used": problem.hints_used_total,
                "progress_made": step.progress_made,
                "stuck_turns": step.stuck_turns,
                "solution_completed": verdict["solution_completed"],
                "is_correct": verdict["is_correct"],
            },
            "streak": {
                "progress": session.streak_progress,
                "completions": session.streak_completions,
                "completed": streak_completed,
                "feedback": streak.feedback_for(update),
            },
            "problem_info": problem.info(),
        }
        if assessment_payload:
            response["assessment"] = assessment_payload
        return response

    async def _verify_image_problem(self, session: Session, problem: Problem) -> Optional[Dict[str, str]]:
        """
        Re-read a low-confidence image problem and fix its text in place.

        Returns the correction applied, if any. Verification is best
        effort: failures leave the problem as it is.
        """
        if not problem.image_key:
            return None
        if problem.ocr_confidence is not None and problem.ocr_confidence >= VERIFY_BELOW_CONFIDENCE:
            return None

        try:
            image = await self.images.load_image(problem.image_key)
            if not image:
                logger.warning(f"Image {problem.image_key} not found, skipping verification")
                return None
            verification = await self.images.verify_problem_text(
                image["data"], image["content_type"], problem.raw_input
            )
        except AppError as e:
            logger.error(f"Image verification failed for {problem.problem_id}: {e}")
            return None

        problem.ocr_confidence = VISION_CONFIDENCE
        correction = None
        if not verification["matches"] and verification["correct_text"]:
            original_text = problem.raw_input
            processed = await self.processor.process_problem(verification["correct_text"])
            problem.raw_input = processed["raw_input"]
            problem.normalized_latex = processed["normalized_latex"]
            problem.category = processed["category"]
            problem.difficulty = processed["difficulty"]
            correction = {"original_text": original_text, "corrected_text": problem.raw_input}
            logger.info(f"Problem {problem.problem_id} corrected from image")

        await self.sessions.save_session(session)
        return correction

    async def _handle_mc_answer(
        self,
        session: Session,
        problem: Problem,
        question_id: str,
        mc_answer: int,
    ) -> Dict[str, Any]:
        result = record_mc_answer(problem, question_id, mc_answer)

        result["transfer_problem"] = None
        if result["problem_completed"]:
            session.current_problem_id = None
            if result["mc_quiz_passed"]:
                assessment = problem.learning_assessment
                transfer = await self.assessor.generate_transfer_problem(problem, assessment.approach_extracted)
                assessment.transfer_problem = transfer
                if transfer:
                    result["transfer_problem"] = vars(transfer).copy()

        await self.sessions.save_session(session)
        return {
            "session_code": session.session_code,
            "mc_result": result,
            "problem_info": problem.info(),
        }

    async def _handle_transfer_answer(self, session: Session, answer: str) -> Dict[str, Any]:
        answer = (answer or "").strip()
        if not answer:
            raise ValidationError("Transfer answer cannot be empty", "transfer_answer")

        problem = next(
            (
                p for p in reversed(session.problems)
                if p.learning_assessment is not None
                and p.learning_assessment.transfer_problem is not None
                and p.learning_assessment.transfer_success is None
            ),
            None,
        )
        if problem is None:
            raise ValidationError("No transfer problem available", "assessment")

        is_correct = await self.assessor.verify_transfer_answer(
            problem.learning_assessment.transfer_problem, answer
        )
        result = record_transfer_result(problem, answer, is_correct)

        await self.sessions.save_session(session)
        return {
            "session_code": session.session_code,
            "transfer_result": result,
            "problem_info": problem.info(),
        }

    # ==================== Similar problems ====================

    async def similar_problems_for_session(self, session_code: str) -> Dict[str, Any]:
        """Practice options for the session's current problem, or its latest one."""
        session = await self.sessions.get_session(session_code)
        problem = session.current_problem or (session.problems[-1] if session.problems else None)
        if problem is None:
            raise NotFoundError("Problem")

        options = await self.similarity.get_similar_problem_options(problem, exclude_session=session_code)
        return {
            "session_code": session_code,
            "problem_id": problem.problem_id,
            "original_problem": problem.raw_input,
            "options": options,
        }
