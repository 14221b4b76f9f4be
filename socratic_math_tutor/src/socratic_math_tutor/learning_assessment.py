"""
Learning Assessment

After a correct solution the student takes a short multiple choice quiz
about the approach that was used. Passing offers an optional transfer
problem (same approach, new numbers) for extra credit. Failing flags the
problem for the teacher. Either way the problem is completed so the
student can move on.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from socratic_math_tutor.errors import LLMError, NotFoundError, ValidationError
from socratic_math_tutor.llm_utils import complete, parse_json_response, strip_code_fences
from socratic_math_tutor.session_state import (
    LearningAssessment,
    MCQuestion,
    Problem,
    Step,
    TransferProblem,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

MC_PASS_THRESHOLD = 0.67
MIN_MC_QUESTIONS = 2
MAX_MC_QUESTIONS = 3
MC_OPTION_COUNT = 4

MC_WEIGHT = 0.6
TRANSFER_WEIGHT = 0.4

CATEGORY_APPROACHES = {
    "arithmetic": "Basic arithmetic operations",
    "algebra": "Solving algebraic equations",
    "geometry": "Geometric calculations",
    "word": "Word problem solving",
    "multi-step": "Multi-step problem solving",
}
DEFAULT_APPROACH = "Mathematical problem solving"

PASS_PROMPT = "Great job! You passed the quiz! Is there another problem you want to do?"
FAIL_PROMPT = (
    "It looks like you might need more help with this topic. Don't worry - I've let your "
    "teacher know so they can help you. Would you like to try a different problem?"
)
TRANSFER_REWARD = {"type": "star", "message": "🌟 Great job! You earned extra credit!"}

GENERIC_QUESTIONS = [
    {
        "question": "What did we do to solve this problem?",
        "options": [
            "We worked through it step by step",
            "We guessed the answer",
            "We skipped the problem",
            "We asked for help",
        ],
        "correct_answer_index": 0,
    },
    {
        "question": "What is a good first step for a problem like this?",
        "options": [
            "Write down the final answer right away",
            "Figure out what information we have and what we need to find",
            "Pick the biggest number",
            "Skip to the last step",
        ],
        "correct_answer_index": 1,
    },
]


def _question_id(problem: Problem, index: int) -> str:
    return f"mcq-{problem.problem_id or 'default'}-{index}"


def _is_valid_question(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    options = data.get("options")
    index = data.get("correct_answer_index")
    return (
        bool(data.get("question"))
        and isinstance(options, list)
        and len(options) == MC_OPTION_COUNT
        and isinstance(index, int)
        and not isinstance(index, bool)
        and 0 <= index < MC_OPTION_COUNT
    )


def pad_questions(problem: Problem, questions: List[MCQuestion]) -> List[MCQuestion]:
    """Top up a quiz with generic questions until it has the minimum size."""
    padded = list(questions)
    for generic in GENERIC_QUESTIONS:
        if len(padded) >= MIN_MC_QUESTIONS:
            break
        padded.append(MCQuestion(
            question_id=_question_id(problem, len(padded)),
            question=generic["question"],
            options=list(generic["options"]),
            correct_answer_index=generic["correct_answer_index"],
        ))
    return padded


def evaluate_mc_answer(question: MCQuestion, selected_index: int) -> MCQuestion:
    question.student_answer_index = selected_index
    question.correct = selected_index == question.correct_answer_index
    return question


def calculate_learning_confidence(mc_score: float, transfer_success: Optional[bool]) -> float:
    """MC score alone, or 60% MC plus 40% for a solved transfer problem."""
    if transfer_success is None:
        return mc_score
    return mc_score * MC_WEIGHT + (TRANSFER_WEIGHT if transfer_success else 0.0)


def get_adaptive_recommendation(confidence: float) -> Dict[str, Any]:
    if confidence >= 0.8:
        return {
            "action": "continue",
            "message": "Excellent! You've really mastered this approach! Ready to try another problem?",
            "suggest_practice": False,
        }
    if confidence >= 0.5:
        return {
            "action": "optional_practice",
            "message": "Good progress! A bit more practice will make this solid. Want to try another similar problem?",
            "suggest_practice": True,
        }
    return {
        "action": "recommend_practice",
        "message": "Let's practice this approach with one more problem to strengthen your understanding!",
        "suggest_practice": True,
    }


def record_mc_answer(problem: Problem, question_id: str, selected_index: int) -> Dict[str, Any]:
    """
    Grade one quiz answer and, once every question is answered, settle
    the quiz outcome on the problem.

    Mutates ``problem`` in place; the caller persists it.
    """
    assessment = problem.learning_assessment
    if not assessment or not assessment.mc_questions:
        raise ValidationError("No MC questions available", "assessment")

    if not isinstance(selected_index, int) or isinstance(selected_index, bool) \
            or not 0 <= selected_index < MC_OPTION_COUNT:
        raise ValidationError("mc_answer must be an option index between 0 and 3", "mc_answer")

    question = next((q for q in assessment.mc_questions if q.question_id == question_id), None)
    if question is None:
        raise NotFoundError("MC question")

    evaluate_mc_answer(question, selected_index)

    questions = assessment.mc_questions
    correct_count = sum(1 for q in questions if q.correct is True)
    mc_score = correct_count / len(questions)
    assessment.mc_score = mc_score

    next_index = next(
        (i for i, q in enumerate(questions) if q.student_answer_index is None),
        None,
    )
    all_answered = next_index is None

    # Scores are compared at percent precision so 2 of 3 (67%) passes
    passed = all_answered and round(mc_score, 2) >= MC_PASS_THRESHOLD
    failed = all_answered and not passed

    learning_confidence = None
    new_problem_prompt = None
    if all_answered:
        learning_confidence = calculate_learning_confidence(mc_score, assessment.transfer_success)
        assessment.learning_confidence = learning_confidence
        assessment.assessment_completed = True
        problem.completed = True

    if passed:
        new_problem_prompt = PASS_PROMPT
        logger.info(f"MC quiz passed on {problem.problem_id}: {round(mc_score * 100)}%")
    elif failed:
        assessment.mc_quiz_failed = True
        assessment.mc_quiz_failed_at = utc_now_iso()
        new_problem_prompt = FAIL_PROMPT
        logger.warning(
            f"MC quiz failed on {problem.problem_id}: {round(mc_score * 100)}% "
            f"(threshold {round(MC_PASS_THRESHOLD * 100)}%), flagged for teacher"
        )

    return {
        "question_id": question_id,
        "correct": question.correct,
        "mc_score": mc_score,
        "all_answered": all_answered,
        "next_question_index": next_index,
        "learning_confidence": learning_confidence,
        "updated_questions": [vars(q).copy() for q in questions],
        "mc_quiz_passed": passed,
        "mc_quiz_failed": failed,
        "problem_completed": all_answered,
        "new_problem_prompt": new_problem_prompt,
    }


def record_transfer_result(problem: Problem, answer: str, is_correct: bool) -> Dict[str, Any]:
    """Store a graded transfer answer and recompute the learning confidence."""
    assessment = problem.learning_assessment
    mc_score = assessment.mc_score or 0.0
    confidence = calculate_learning_confidence(mc_score, is_correct)

    assessment.transfer_success = is_correct
    assessment.transfer_answer = answer
    assessment.learning_confidence = confidence
    assessment.assessment_completed = True

    return {
        "correct": is_correct,
        "learning_confidence": confidence,
        "recommendation": get_adaptive_recommendation(confidence),
        "reward": dict(TRANSFER_REWARD) if is_correct else None,
    }


class LearningAssessor:
    """LLM-backed quiz and transfer problem generation."""

    def __init__(self, llm_client: AsyncOpenAI):
        self.llm_client = llm_client

    async def extract_approach(self, problem: Problem, steps: List[Step]) -> str:
        """Describe the approach used in the conversation in 1-2 sentences."""
        conversation = "\n\n".join(
            f"Tutor: {s.tutor_prompt}\nStudent: {s.student_response}" for s in steps
        )
        latex_line = (
            f"LaTeX: {problem.normalized_latex}"
            if problem.normalized_latex and problem.normalized_latex != problem.raw_input
            else ""
        )

        prompt = f"""Analyze this math tutoring conversation and identify the specific problem-solving approach/method that was used.

Problem: {problem.raw_input}
{latex_line}
Category: {problem.category}

Conversation:
{conversation}

Identify the core approach used (e.g., "solving linear equations by isolating variables", "using area formula for rectangles", "solving by substitution").

Respond with ONLY a brief description of the approach (1-2 sentences max)."""

        try:
            approach = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are an expert at identifying mathematical problem-solving approaches from tutoring conversations. Respond concisely."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=100,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning(f"Approach extraction failed, using category default: {e}")
            return CATEGORY_APPROACHES.get(problem.category, DEFAULT_APPROACH)

        logger.debug(f"Extracted approach: {approach[:50]}")
        return approach or CATEGORY_APPROACHES.get(problem.category, DEFAULT_APPROACH)

    async def generate_mc_questions(
        self,
        problem: Problem,
        approach: str,
        steps: List[Step],
    ) -> List[MCQuestion]:
        """Generate 2-3 four-option questions about the approach."""
        key_steps = ", ".join(
            s.student_response for s in [s for s in steps if s.progress_made][-3:]
            if s.student_response
        )

        prompt = f"""Generate EXACTLY 2-3 multiple choice questions (prefer 3, minimum 2) that test understanding of the problem-solving approach used. Make them age-appropriate for K-12 students.

Problem: {problem.raw_input}
Approach used: {approach}
Key steps taken: {key_steps or 'Student worked through the problem step by step'}

Test different aspects:
1. Which method/strategy was used ("How did we solve this problem?")
2. Key steps in the approach ("What did we do first?" or "What did we do next?")
3. Why the approach works ("Why did we use this method?")

For each question, provide the question text, 4 answer options (one correct, three plausible distractors) and the correct answer index (0-3).

Respond with ONLY a JSON array in this exact format:
[
  {{"question": "How did we solve this problem?", "options": ["Added numbers", "Isolated the variable", "Multiplied everything", "Guessed"], "correct_answer_index": 1}}
]"""

        questions: List[MCQuestion] = []
        try:
            content = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are an expert at creating educational multiple choice questions. Respond with valid JSON only."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=500,
                temperature=0.7,
            )
            raw_questions = json.loads(strip_code_fences(content) or "[]")
        except (LLMError, json.JSONDecodeError) as e:
            logger.warning(f"MC question generation failed, using generic questions: {e}")
            raw_questions = []

        if isinstance(raw_questions, list):
            valid = [q for q in raw_questions if _is_valid_question(q)][:MAX_MC_QUESTIONS]
            for index, q in enumerate(valid):
                questions.append(MCQuestion(
                    question_id=_question_id(problem, index),
                    question=q["question"],
                    options=[str(option) for option in q["options"]],
                    correct_answer_index=q["correct_answer_index"],
                ))

        if len(questions) < MIN_MC_QUESTIONS:
            logger.warning(f"Only {len(questions)} MC questions generated, padding with generic ones")
            questions = pad_questions(problem, questions)

        logger.debug(f"Generated {len(questions)} MC questions")
        return questions

    async def start_assessment(self, problem: Problem) -> LearningAssessment:
        approach = await self.extract_approach(problem, problem.steps)
        questions = await self.generate_mc_questions(problem, approach, problem.steps)
        return LearningAssessment(approach_extracted=approach, mc_questions=questions)

    async def generate_transfer_problem(self, problem: Problem, approach: str) -> Optional[TransferProblem]:
        prompt = f"""Generate a similar math problem that uses the EXACT SAME problem-solving approach but with different numbers and/or context.

Original problem: {problem.raw_input}
Category: {problem.category}
Approach: {approach}

Generate a new problem that:
- Uses the same approach/method
- Has different numbers or context
- Is appropriate for K-12 students
- Is similar in difficulty level

Respond with ONLY the problem text, nothing else."""

        try:
            text = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are an expert at creating educational math problems. Generate similar problems that use the same approaches."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=150,
                temperature=0.7,
            )
        except LLMError as e:
            # Transfer problems are optional extra credit
            logger.warning(f"Transfer problem generation failed: {e}")
            return None

        if not text:
            return None

        logger.debug(f"Generated transfer problem: {text[:50]}")
        return TransferProblem(
            problem_text=text,
            approach=approach,
            original_problem_id=problem.problem_id,
        )

    async def verify_transfer_answer(self, transfer_problem: TransferProblem, answer: str) -> bool:
        """
        Raises:
            LLMError: when the provider fails or the verdict is unreadable
        """
        prompt = f"""The student was asked to solve this transfer problem using the same approach as the original problem.

Transfer problem: {transfer_problem.problem_text}
Student's answer: "{answer}"

Determine if the student's answer is correct. Respond with ONLY a JSON object:
{{
  "is_correct": true or false,
  "reasoning": "brief explanation"
}}"""

        content = await complete(
            self.llm_client,
            [
                {"role": "system", "content": "You are an expert at verifying math answers. Respond with valid JSON only."},
                {"role": "user", "content": prompt},
            ],
            max_tokens=100,
            temperature=0.3,
        )

        try:
            result = parse_json_response(content or "{}")
        except json.JSONDecodeError as e:
            raise LLMError("Could not read transfer answer verdict", e) from e

        is_correct = bool(result.get("is_correct", False))
        logger.info(f"Transfer answer verdict: {is_correct} ({result.get('reasoning', '')})")
        return is_correct
