"""
Problem Processor

Turns raw student input into a stored problem: LaTeX normalization (LLM),
category tagging and difficulty classification (rule-based), plus the
checks run before a submission is accepted (is it math, is it complete,
is it more than one problem).
"""

import logging
import re
from typing import Dict, List, Any, Optional

from openai import AsyncOpenAI

from socratic_math_tutor.errors import ValidationError
from socratic_math_tutor.llm_utils import complete, strip_code_fences

logger = logging.getLogger(__name__)

CATEGORIES = ["arithmetic", "algebra", "geometry", "word", "multi-step", "other"]
DIFFICULTIES = ["very_easy", "easy", "medium", "hard", "very_hard", "unknown"]

ARITHMETIC_PATTERNS = [
    re.compile(r'\d+\s*[+\-×*÷/]\s*\d+'),
    re.compile(r'\b(multiply|divide|add|subtract|plus|minus)\b'),
    re.compile(r'fraction|percentage|decimal', re.IGNORECASE),
    re.compile(r'\b\d+\s*(times|divided by)\s*\d+\b'),
]

ALGEBRA_PATTERNS = [
    re.compile(r'[a-z]\s*[=+\-×*÷/]'),
    re.compile(r'solve for|find [a-z]|variable|equation', re.IGNORECASE),
    re.compile(r'\b(2x|3y|4z|5a|6b)\b'),
    re.compile(r'\b(linear|quadratic|polynomial)\b', re.IGNORECASE),
]

GEOMETRY_PATTERNS = [
    re.compile(r'\b(triangle|circle|square|rectangle|area|perimeter|angle|radius|diameter)\b', re.IGNORECASE),
    re.compile(r'\b(degrees?|°|cm\s*²|meters?)\b', re.IGNORECASE),
    re.compile(r'\b(pythagorean|hypotenuse|base|height)\b', re.IGNORECASE),
]

WORD_PATTERNS = [
    re.compile(r'\b(has|have|bought|sold|spent|earned|left|remaining|total|altogether)\b', re.IGNORECASE),
    re.compile(r'\b(how many|how much|how long|how far)\b', re.IGNORECASE),
    re.compile(r'\b(if|when|then|after|before)\b.*\b(how)\b', re.IGNORECASE),
    re.compile(r'\d+\s*(years?|months?|days?|hours?|minutes?|dollars?|cents?)', re.IGNORECASE),
]

SEQUENCE_WORDS = re.compile(r'\b(and|then|also|next|finally)\b', re.IGNORECASE)

MULTI_STEP_PATTERNS = [
    re.compile(r'\b(first|then|next|finally|step 1|step 2)\b', re.IGNORECASE),
    re.compile(r'\b(and then|after that|also|in addition)\b', re.IGNORECASE),
    re.compile(r'[+\-×*÷/].*[+\-×*÷/]'),
]

WORD_CONTEXT = re.compile(r'\b(has|have|bought|sold|spent|earned)\b', re.IGNORECASE)

NUMBERED_LINE = re.compile(r'^\d+[.)]\s+')


def _matches_any(patterns, text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def categorize_problem(text: str, latex: str = "") -> str:
    """
    Rule-based category tagging.

    Checks run in order (arithmetic, algebra, geometry, word, multi-step);
    the first match wins and unclear problems default to arithmetic.
    """
    search_text = f"{text} {latex}".lower()

    if _matches_any(ARITHMETIC_PATTERNS, search_text):
        return "arithmetic"

    if _matches_any(ALGEBRA_PATTERNS, search_text):
        return "algebra"

    if _matches_any(GEOMETRY_PATTERNS, search_text):
        return "geometry"

    if _matches_any(WORD_PATTERNS, search_text):
        sequence_count = len(SEQUENCE_WORDS.findall(search_text))
        return "multi-step" if sequence_count >= 2 else "word"

    if _matches_any(MULTI_STEP_PATTERNS, search_text):
        return "multi-step"

    return "arithmetic"


def classify_difficulty(text: str, category: str) -> str:
    """Score problem complexity and bucket it into a difficulty label."""
    search_text = text.lower()
    score = 0

    score += len(re.findall(r'[+\-×*÷/=]', search_text)) * 2

    if category == "algebra":
        score += len(re.findall(r'[a-z]', search_text)) * 3

    numbers = [int(n) for n in re.findall(r'\d+', search_text)]
    max_number = max(numbers) if numbers else 0
    if max_number > 1000:
        score += 3
    elif max_number > 100:
        score += 2
    elif max_number > 10:
        score += 1

    if category == "multi-step":
        score += 5

    if category == "word":
        score += len(WORD_CONTEXT.findall(search_text)) * 2

    if score <= 3:
        return "very_easy"
    if score <= 6:
        return "easy"
    if score <= 10:
        return "medium"
    if score <= 15:
        return "hard"
    return "very_hard"


class ProblemProcessor:
    """LLM-backed parts of problem intake."""

    def __init__(self, llm_client: AsyncOpenAI):
        self.llm_client = llm_client

    async def normalize_to_latex(self, raw_text: str) -> str:
        if not raw_text or not raw_text.strip():
            return (raw_text or "").strip()

        prompt = f"""Convert this math problem or equation to LaTeX format. Keep the meaning identical. Return only the LaTeX code, nothing else.

Problem: "{raw_text}"

LaTeX:"""

        try:
            latex = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are a math notation converter. Convert mathematical expressions to LaTeX format accurately and concisely."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=200,
                temperature=0.3,
            )
        except Exception as e:
            # Raw text is still a usable problem statement
            logger.warning(f"LaTeX normalization failed, keeping raw text: {e}")
            return raw_text

        cleaned = strip_code_fences(latex)
        logger.debug(f"Normalized to LaTeX: {raw_text[:50]} -> {cleaned[:50]}")
        return cleaned or raw_text

    async def detect_multiple_problems(self, raw_text: str) -> Dict[str, Any]:
        """
        Returns:
            {"is_multiple": bool, "problems": [str, ...]}
        """
        if not raw_text or not raw_text.strip():
            return {"is_multiple": False, "problems": []}

        prompt = f"""Does this text contain one math problem or multiple separate math problems? If multiple, list them numbered.

Text: "{raw_text}"

If there is only ONE problem, respond with: "SINGLE: [the problem text]"
If there are MULTIPLE problems, respond with each problem on a new line numbered: "MULTIPLE:\\n1. [first problem]\\n2. [second problem]\\n..." """

        try:
            reply = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are a math problem parser. Identify if text contains one or multiple separate math problems."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=1000,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning(f"Multiple-problem detection failed, treating as single: {e}")
            return {"is_multiple": False, "problems": [raw_text]}

        if reply.startswith("MULTIPLE:"):
            lines = [line.strip() for line in reply[len("MULTIPLE:"):].split("\n")]
            problems = [
                NUMBERED_LINE.sub("", line).strip()
                for line in lines
                if line and NUMBERED_LINE.match(line)
            ]
            problems = [p for p in problems if p]
            if len(problems) >= 2:
                logger.debug(f"Detected {len(problems)} problems in text")
                return {"is_multiple": True, "problems": problems}
        elif reply.startswith("SINGLE:"):
            return {"is_multiple": False, "problems": [reply[len("SINGLE:"):].strip()]}

        return {"is_multiple": False, "problems": [raw_text]}

    async def has_math_problem(self, text: str) -> bool:
        if not text or not text.strip():
            return False

        try:
            reply = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are a math problem detector. Determine if text contains a math problem."},
                    {"role": "user", "content": f'Does this text contain a math problem? Respond with only "YES" or "NO".\n\nText: "{text}"'},
                ],
                max_tokens=10,
                temperature=0.1,
            )
        except Exception as e:
            logger.warning(f"Math problem check failed, accepting non-empty text: {e}")
            return True

        has_math = reply.upper() == "YES"
        logger.debug(f"Math problem check: {'YES' if has_math else 'NO'}")
        return has_math

    async def validate_problem(self, text: str) -> Dict[str, Any]:
        """
        Returns:
            {"valid": bool, "reason": Optional[str]}
        """
        if not text or not text.strip():
            return {"valid": False, "reason": "Problem text is empty"}

        try:
            reply = await complete(
                self.llm_client,
                [
                    {"role": "system", "content": "You are a math problem validator. Determine if text is a valid, complete, solvable math problem."},
                    {"role": "user", "content": f'Is this a valid, complete math problem? Respond with "VALID" or "INVALID" followed by a brief reason.\n\nProblem: "{text}"'},
                ],
                max_tokens=100,
                temperature=0.2,
            )
        except Exception as e:
            logger.warning(f"Problem validation failed, assuming valid: {e}")
            return {"valid": True, "reason": None}

        valid = reply.upper().startswith("VALID")
        reason: Optional[str] = None
        if not valid:
            reason_match = re.search(r'INVALID\s*:?\s*(.+)', reply, re.IGNORECASE | re.DOTALL)
            reason = reason_match.group(1).strip() if reason_match else "Problem is not valid or complete"

        logger.debug(f"Problem validation: {'VALID' if valid else 'INVALID'} - {reason or 'N/A'}")
        return {"valid": valid, "reason": reason}

    async def validate_multiple_problems(self, problems: List[str]) -> Dict[str, List[Any]]:
        valid_problems: List[str] = []
        invalid_problems: List[Dict[str, str]] = []

        for problem_text in problems or []:
            validation = await self.validate_problem(problem_text)
            if validation["valid"]:
                valid_problems.append(problem_text)
            else:
                invalid_problems.append({
                    "text": problem_text,
                    "reason": validation["reason"] or "Invalid problem",
                })

        logger.info(
            f"Validated {len(problems or [])} problems: "
            f"{len(valid_problems)} valid, {len(invalid_problems)} invalid"
        )
        return {"valid_problems": valid_problems, "invalid_problems": invalid_problems}

    async def process_problem(self, raw_text: str) -> Dict[str, str]:
        """Normalize, categorize and classify a problem."""
        if not raw_text or not raw_text.strip():
            raise ValidationError("Problem text cannot be empty", "text")

        normalized_latex = await self.normalize_to_latex(raw_text)
        category = categorize_problem(raw_text, normalized_latex)
        difficulty = classify_difficulty(raw_text, category)

        logger.info(f"Processed problem: category={category}, difficulty={difficulty}")
        return {
            "raw_input": raw_text,
            "normalized_latex": normalized_latex,
            "category": category,
            "difficulty": difficulty,
        }
