"""
Socratic Dialogue Engine

Guides the student through a problem with questions instead of answers.
Progress and stuck detection are heuristic so they cost no LLM calls;
the LLM is only used to phrase the tutor turn and to judge whether the
student has reached a final answer.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from socratic_math_tutor.llm_utils import complete, parse_json_response
from socratic_math_tutor.session_state import Problem, Step

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a patient, encouraging math tutor for K-12 students. Your role is to guide students to discover solutions through Socratic questioning.

CRITICAL RULES:
1. NEVER give direct answers or solve problems for the student
2. Ask guiding questions that help students think through the problem
3. If a student is stuck after 2+ turns with no progress, provide a concrete hint (but still guide them to the answer)
4. Use encouraging, supportive language even when students make mistakes
5. Break complex problems into smaller, manageable steps
6. Acknowledge correct thinking and build on it
7. When students provide correct answers, validate and explain why it's correct

QUESTIONING STRATEGY:
- Start with: "What information do we have?" or "What are we trying to find?"
- Guide method selection: "What operation might help us here?"
- Step through: "What should we do next?" or "How can we simplify this?"
- Validate understanding: "Why does that work?" or "Can you explain your reasoning?"

TONE:
- Warm and encouraging
- Patient with mistakes
- Celebrate progress, even small steps
- Use age-appropriate language for K-12 students"""

HINT_INSTRUCTION = (
    "The student has been stuck for 2+ turns. Provide a concrete hint while still "
    "guiding them to discover the answer themselves. Make it encouraging."
)

FALLBACK_TUTOR_MESSAGE = "Let's think about this step by step."

# A hint is offered once this many consecutive turns show no progress
STUCK_TURNS_FOR_HINT = 2

PROGRESS_INDICATORS = [
    re.compile(r"correct|right|yes|that's it|exactly", re.IGNORECASE),
    re.compile(r"i (think|believe|know)", re.IGNORECASE),
    re.compile(r"\d+"),
    re.compile(r"because|since|so", re.IGNORECASE),
]

STUCK_INDICATORS = [
    re.compile(r"i don'?t know|i'm stuck|i can'?t|no idea|help", re.IGNORECASE),
    re.compile(r"(what|how|why)\s*\?", re.IGNORECASE),
    re.compile(r"^\s*$"),
]


@dataclass
class ProgressAnalysis:
    made_progress: bool
    progress_score: int
    stuck_score: int
    response_length: int
    stuck_turns: int = 0
    should_provide_hint: bool = False


def analyze_progress(student_response: str) -> ProgressAnalysis:
    """Score a response against progress and stuck indicators."""
    response = (student_response or "").lower().strip()

    progress_score = sum(1 for pattern in PROGRESS_INDICATORS if pattern.search(response))
    stuck_score = sum(1 for pattern in STUCK_INDICATORS if pattern.search(response))

    return ProgressAnalysis(
        made_progress=progress_score > stuck_score and len(response) > 3,
        progress_score=progress_score,
        stuck_score=stuck_score,
        response_length=len(response),
    )


def count_stuck_turns(steps: List[Step]) -> int:
    """
    Consecutive turns without progress, counted from the most recent.

    Stops at the latest progress step; hinted steps are skipped since
    the student already got help on them, and so is the tutor's opening
    prompt, which has no student response.
    """
    stuck_count = 0
    for step in reversed(steps):
        if step.progress_made:
            break
        if step.hint_used or step.student_response is None:
            continue
        stuck_count += 1
    return stuck_count


class SocraticEngine:
    """Generates tutor turns for a problem's conversation."""

    def __init__(self, llm_client: AsyncOpenAI):
        self.llm_client = llm_client

    def build_messages(
        self,
        problem_text: str,
        normalized_latex: Optional[str],
        category: str,
        student_response: Optional[str] = None,
        conversation_history: Optional[List[Step]] = None,
        should_provide_hint: bool = False,
        correction: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]

        problem_context = f"Problem: {problem_text}"
        if normalized_latex and normalized_latex != problem_text:
            problem_context += f"\nLaTeX: {normalized_latex}"
        problem_context += (
            f"\nCategory: {category}\n\n"
            "Start the conversation with a Socratic question to help the student discover the solution."
        )
        messages.append({"role": "user", "content": problem_context})

        for step in conversation_history or []:
            if step.tutor_prompt:
                messages.append({"role": "assistant", "content": step.tutor_prompt})
            if step.student_response:
                messages.append({"role": "user", "content": step.student_response})

        if student_response:
            messages.append({"role": "user", "content": student_response})

        if correction:
            messages.append({
                "role": "system",
                "content": (
                    f'The problem text was read incorrectly from the image as "{correction["original_text"]}". '
                    f'The correct problem is "{correction["corrected_text"]}". Briefly let the student know '
                    "about the correction and continue guiding them on the correct problem."
                ),
            })

        if should_provide_hint:
            messages.append({"role": "system", "content": HINT_INSTRUCTION})

        return messages

    async def generate_tutor_response(
        self,
        problem_text: str,
        normalized_latex: Optional[str],
        category: str,
        student_response: Optional[str] = None,
        conversation_history: Optional[List[Step]] = None,
        should_provide_hint: bool = False,
        correction: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Generate the next tutor message.

        Returns:
            {"message": str, "hint_provided": bool}

        Raises:
            LLMError: when the chat completion fails
        """
        messages = self.build_messages(
            problem_text,
            normalized_latex,
            category,
            student_response=student_response,
            conversation_history=conversation_history,
            should_provide_hint=should_provide_hint,
            correction=correction,
        )

        tutor_message = await complete(self.llm_client, messages, max_tokens=200, temperature=0.7)
        tutor_message = tutor_message or FALLBACK_TUTOR_MESSAGE

        logger.debug(f"Generated tutor response: {tutor_message[:100]}")
        return {"message": tutor_message, "hint_provided": should_provide_hint}

    async def generate_initial_prompt(self, problem: Problem) -> str:
        response = await self.generate_tutor_response(
            problem.raw_input,
            problem.normalized_latex,
            problem.category,
        )
        return response["message"]

    async def process_student_response(
        self,
        student_response: str,
        problem: Problem,
        steps: Optional[List[Step]] = None,
    ) -> Dict[str, Any]:
        """
        Analyze a student turn and produce the tutor's reply.

        Returns:
            {"step": Step, "progress_analysis": ProgressAnalysis, "tutor_message": str}
        """
        steps = steps or []

        analysis = analyze_progress(student_response)
        stuck_turns = count_stuck_turns(steps)
        should_provide_hint = stuck_turns >= STUCK_TURNS_FOR_HINT and not analysis.made_progress

        analysis.stuck_turns = stuck_turns
        analysis.should_provide_hint = should_provide_hint

        tutor_response = await self.generate_tutor_response(
            problem.raw_input,
            problem.normalized_latex,
            problem.category,
            student_response=student_response,
            conversation_history=steps,
            should_provide_hint=should_provide_hint,
        )

        step = Step(
            tutor_prompt=tutor_response["message"],
            student_response=student_response,
            hint_used=tutor_response["hint_provided"],
            progress_made=analysis.made_progress,
            stuck_turns=stuck_turns,
        )

        return {
            "step": step,
            "progress_analysis": analysis,
            "tutor_message": tutor_response["message"],
        }

    async def detect_solution_completion(
        self,
        student_response: str,
        problem: Problem,
        steps: Optional[List[Step]] = None,
    ) -> Dict[str, bool]:
        """
        Ask the LLM whether the student has stated a final answer and
        whether it is correct.

        Returns:
            {"solution_completed": bool, "is_correct": bool}; both False
            when the verdict cannot be obtained.
        """
        verdict = {"solution_completed": False, "is_correct": False}
        if not student_response or not student_response.strip():
            return verdict

        recent = []
        for step in (steps or [])[-4:]:
            if step.tutor_prompt:
                recent.append(f"Tutor: {step.tutor_prompt}")
            if step.student_response:
                recent.append(f"Student: {step.student_response}")
        conversation = "\n".join(recent) or "(no earlier turns)"

        prompt = f"""A student is working on this math problem with a tutor.

Problem: {problem.raw_input}

Recent conversation:
{conversation}

Student's latest message: "{student_response}"

Has the student stated a final answer to the whole problem, and is it correct?
Respond with ONLY a JSON object:
{{"solution_completed": true or false, "is_correct": true or false}}"""

        try:
            content = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are an expert at verifying math answers. Respond with valid JSON only."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=50,
                temperature=0.1,
            )
            result = parse_json_response(content)
        except Exception as e:
            logger.warning(f"Solution completion check failed: {e}")
            return verdict

        completed = bool(result.get("solution_completed", False))
        verdict["solution_completed"] = completed
        verdict["is_correct"] = completed and bool(result.get("is_correct", False))
        return verdict
