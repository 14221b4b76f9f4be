"""
Similar Problem Search

Hybrid search for practice problems: embedding similarity against problems
other students already finished, topped up with LLM-generated problems.
At most three options are returned.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from socratic_math_tutor.errors import LLMError, ValidationError
from socratic_math_tutor.llm_utils import complete, embedding_model
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_state import Problem

logger = logging.getLogger(__name__)

MAX_OPTIONS = 3
MAX_FROM_DATABASE = 2

NUMBERED_LINE = re.compile(r'^\d+[.)]\s+')


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if len(vec_a) != len(vec_b):
        raise ValueError("Vectors must have the same length")

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    denominator = norm_a * norm_b
    if denominator == 0:
        return 0.0
    return dot_product / denominator


def problem_text(problem: Problem) -> str:
    return (problem.raw_input or problem.normalized_latex or "").strip()


class SimilarityService:
    """Finds and generates problems similar to a given one."""

    def __init__(self, llm_client: AsyncOpenAI, session_manager: SessionManager):
        self.llm_client = llm_client
        self.session_manager = session_manager

    async def generate_embedding(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Problem text cannot be empty", "problem_text")

        try:
            response = await self.llm_client.embeddings.create(
                model=embedding_model(),
                input=text.strip(),
            )
        except Exception as e:
            raise LLMError("Failed to generate problem embedding", e) from e

        return list(response.data[0].embedding)

    async def find_similar_problems(
        self,
        problem: Problem,
        limit: int = MAX_FROM_DATABASE,
        exclude_session: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Rank completed or assessed problems from other sessions by
        embedding similarity to ``problem``.
        """
        original_text = problem_text(problem)
        if not original_text:
            logger.warning("No problem text found for similarity search")
            return []

        candidates = []
        for session in await self.session_manager.list_sessions():
            if exclude_session and session.session_code == exclude_session:
                continue
            for candidate in session.problems:
                if not (candidate.completed or candidate.learning_assessment):
                    continue
                text = problem_text(candidate)
                if text and text != original_text:
                    candidates.append((session.session_code, candidate, text))

        if not candidates:
            logger.debug("No problems found in database for similarity search")
            return []

        original_embedding = await self.generate_embedding(original_text)

        ranked = []
        for session_code, candidate, text in candidates:
            try:
                embedding = await self.generate_embedding(text)
            except LLMError as e:
                logger.warning(f"Skipping problem {candidate.problem_id} in {session_code}: {e}")
                continue
            ranked.append({
                "problemText": text,
                "similarity": cosine_similarity(original_embedding, embedding),
                "problemId": candidate.problem_id,
                "sessionCode": session_code,
                "category": candidate.category,
                "difficulty": candidate.difficulty,
            })

        ranked.sort(key=lambda item: item["similarity"], reverse=True)
        top = ranked[:limit]
        if top:
            logger.info(f"Found {len(top)} similar problems (top similarity: {top[0]['similarity']:.3f})")
        return top

    async def generate_similar_problems(self, problem: Problem, count: int = 2) -> List[Dict[str, Any]]:
        original_text = problem_text(problem)
        if not original_text or count <= 0:
            return []

        prompt = f"""Generate {count} similar math problems to this one. Each problem should:
- Use the same problem-solving approach/method
- Have similar structure and difficulty level
- Use different numbers or scenarios
- Be solvable and well-formed

Original problem: "{original_text}"

Return ONLY the problems, one per line, numbered:
1. [first similar problem]
2. [second similar problem]"""

        reply = await complete(
            self.llm_client,
            [
                {"role": "system", "content": "You are a math problem generator. Generate similar problems that test the same concepts but with different numbers or scenarios."},
                {"role": "user", "content": prompt},
            ],
            max_tokens=500,
            temperature=0.7,
        )

        generated = []
        for line in reply.split("\n"):
            line = line.strip()
            if not NUMBERED_LINE.match(line):
                continue
            text = NUMBERED_LINE.sub("", line).strip()
            if text:
                generated.append({"problemText": text, "similarity": None, "generated": True})

        generated = generated[:count]
        logger.info(f"Generated {len(generated)} similar problems via LLM")
        return generated

    async def get_similar_problem_options(
        self,
        problem: Problem,
        exclude_session: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Returns:
            Up to three options shaped as
            {problemText, similarity, source, problemId?, sessionCode?, generated?}
        """
        try:
            from_database = await self.find_similar_problems(
                problem, MAX_FROM_DATABASE, exclude_session=exclude_session
            )
        except LLMError as e:
            logger.warning(f"Embedding search failed, generating options only: {e}")
            from_database = []

        generate_count = max(1, MAX_OPTIONS - len(from_database))
        generated = await self.generate_similar_problems(problem, generate_count)

        options = [
            {
                "problemText": item["problemText"],
                "similarity": item["similarity"],
                "source": "database",
                "problemId": item["problemId"],
                "sessionCode": item["sessionCode"],
            }
            for item in from_database
        ]
        options.extend(
            {
                "problemText": item["problemText"],
                "similarity": None,
                "source": "generated",
                "generated": True,
            }
            for item in generated
        )

        result = options[:MAX_OPTIONS]
        logger.info(
            f"Returning {len(result)} similar problem options "
            f"({len(from_database)} from database, {len(generated)} generated)"
        )
        return result
