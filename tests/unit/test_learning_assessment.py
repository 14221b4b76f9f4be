"""
Unit Tests for Learning Assessment

Tests MC grading, quiz pass/fail outcomes, confidence weighting and the
LLM-backed quiz and transfer problem generation.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.errors import LLMError, NotFoundError, ValidationError
from socratic_math_tutor.learning_assessment import (
    CATEGORY_APPROACHES,
    FAIL_PROMPT,
    PASS_PROMPT,
    LearningAssessor,
    calculate_learning_confidence,
    get_adaptive_recommendation,
    pad_questions,
    record_mc_answer,
    record_transfer_result,
)
from socratic_math_tutor.session_state import (
    LearningAssessment,
    MCQuestion,
    Problem,
    Step,
    TransferProblem,
)


def make_problem(question_count=3):
    questions = [
        MCQuestion(
            question_id=f"mcq-P001-{i}",
            question=f"Question {i}?",
            options=["a", "b", "c", "d"],
            correct_answer_index=1,
        )
        for i in range(question_count)
    ]
    return Problem(
        raw_input="Solve for x: 2x + 5 = 13",
        normalized_latex="2x + 5 = 13",
        category="algebra",
        difficulty="medium",
        problem_id="P001",
        steps=[Step(tutor_prompt="What do we know?", student_response="x = 4", progress_made=True)],
        learning_assessment=LearningAssessment(
            approach_extracted="Isolating the variable",
            mc_questions=questions,
        ),
    )


class TestConfidence:
    """Test suite for confidence and recommendations."""

    def test_mc_only(self):
        assert calculate_learning_confidence(0.67, None) == 0.67

    def test_weighted_with_transfer(self):
        assert calculate_learning_confidence(1.0, True) == pytest.approx(1.0)
        assert calculate_learning_confidence(1.0, False) == pytest.approx(0.6)
        assert calculate_learning_confidence(0.5, True) == pytest.approx(0.7)

    @pytest.mark.parametrize("confidence, action, practice", [
        (0.9, "continue", False),
        (0.8, "continue", False),
        (0.6, "optional_practice", True),
        (0.2, "recommend_practice", True),
    ])
    def test_recommendation(self, confidence, action, practice):
        recommendation = get_adaptive_recommendation(confidence)
        assert recommendation["action"] == action
        assert recommendation["suggest_practice"] is practice


class TestRecordMCAnswer:
    """Test suite for quiz grading."""

    def test_partial_answers(self):
        problem = make_problem()
        result = record_mc_answer(problem, "mcq-P001-0", 1)

        assert result["correct"] is True
        assert result["all_answered"] is False
        assert result["next_question_index"] == 1
        assert result["mc_score"] == pytest.approx(1 / 3)
        assert result["learning_confidence"] is None
        assert problem.completed is False

    def test_quiz_passed(self):
        problem = make_problem()
        record_mc_answer(problem, "mcq-P001-0", 1)
        record_mc_answer(problem, "mcq-P001-1", 1)
        result = record_mc_answer(problem, "mcq-P001-2", 0)

        assert result["all_answered"] is True
        assert result["mc_quiz_passed"] is True
        assert result["mc_quiz_failed"] is False
        assert result["new_problem_prompt"] == PASS_PROMPT
        assert result["learning_confidence"] == pytest.approx(2 / 3)
        assert problem.completed is True
        assert problem.learning_assessment.assessment_completed is True
        assert problem.learning_assessment.mc_quiz_failed is False

    def test_quiz_failed_flags_problem(self):
        """Test that a failed quiz still completes the problem and flags it."""
        problem = make_problem(question_count=2)
        record_mc_answer(problem, "mcq-P001-0", 0)
        result = record_mc_answer(problem, "mcq-P001-1", 1)

        assert result["mc_score"] == pytest.approx(0.5)
        assert result["mc_quiz_failed"] is True
        assert result["new_problem_prompt"] == FAIL_PROMPT
        assert problem.completed is True
        assert problem.learning_assessment.mc_quiz_failed is True
        assert problem.learning_assessment.mc_quiz_failed_at is not None

    def test_reanswering_updates_the_grade(self):
        problem = make_problem(question_count=2)
        record_mc_answer(problem, "mcq-P001-0", 0)
        result = record_mc_answer(problem, "mcq-P001-0", 1)
        assert result["correct"] is True
        assert result["mc_score"] == pytest.approx(0.5)

    def test_unknown_question(self):
        with pytest.raises(NotFoundError):
            record_mc_answer(make_problem(), "mcq-P001-9", 1)

    @pytest.mark.parametrize("index", [-1, 4, True])
    def test_out_of_range_index(self, index):
        with pytest.raises(ValidationError):
            record_mc_answer(make_problem(), "mcq-P001-0", index)

    def test_no_assessment(self):
        problem = make_problem()
        problem.learning_assessment = None
        with pytest.raises(ValidationError):
            record_mc_answer(problem, "mcq-P001-0", 1)


class TestTransferResult:
    """Test suite for transfer grading."""

    def test_correct_transfer_rewards_star(self):
        problem = make_problem()
        problem.learning_assessment.mc_score = 1.0
        result = record_transfer_result(problem, "y = 3", True)

        assert result["learning_confidence"] == pytest.approx(1.0)
        assert result["reward"]["type"] == "star"
        assert result["recommendation"]["action"] == "continue"
        assert problem.learning_assessment.transfer_success is True
        assert problem.learning_assessment.transfer_answer == "y = 3"

    def test_incorrect_transfer(self):
        problem = make_problem()
        problem.learning_assessment.mc_score = 2 / 3
        result = record_transfer_result(problem, "y = 9", False)
        assert result["learning_confidence"] == pytest.approx(0.4)
        assert result["reward"] is None


class TestLearningAssessor:
    """Test suite for LLM-backed assessment generation."""

    @pytest.fixture
    def assessor(self, fake_llm):
        """Create assessor over the fake client."""
        return LearningAssessor(fake_llm)

    def test_pad_questions_to_minimum(self):
        problem = make_problem(question_count=0)
        padded = pad_questions(problem, [])
        assert len(padded) == 2
        assert [q.question_id for q in padded] == ["mcq-P001-0", "mcq-P001-1"]

    @pytest.mark.asyncio
    async def test_start_assessment(self, assessor):
        assessment = await assessor.start_assessment(make_problem(question_count=0))

        assert assessment.approach_extracted.startswith("Isolating the variable")
        assert len(assessment.mc_questions) == 3
        assert assessment.mc_questions[0].question_id == "mcq-P001-0"
        assert all(len(q.options) == 4 for q in assessment.mc_questions)

    @pytest.mark.asyncio
    async def test_malformed_questions_are_padded(self, assessor, fake_llm):
        """Test that invalid generated questions are dropped and replaced."""
        fake_llm.replies["multiple choice questions"] = (
            '[{"question": "Only two options?", "options": ["a", "b"], "correct_answer_index": 0},'
            ' {"question": "Good?", "options": ["a", "b", "c", "d"], "correct_answer_index": 3}]'
        )
        questions = await assessor.generate_mc_questions(make_problem(), "approach", [])
        assert len(questions) == 2
        assert questions[0].question == "Good?"
        assert questions[1].question_id == "mcq-P001-1"

    @pytest.mark.asyncio
    async def test_unparseable_questions_fall_back_to_generic(self, assessor, fake_llm):
        fake_llm.replies["multiple choice questions"] = "Here are some questions!"
        questions = await assessor.generate_mc_questions(make_problem(), "approach", [])
        assert len(questions) == 2

    @pytest.mark.asyncio
    async def test_approach_falls_back_to_category(self, assessor, fake_llm):
        fake_llm.replies["problem-solving approaches"] = RuntimeError("boom")
        approach = await assessor.extract_approach(make_problem(), [])
        assert approach == CATEGORY_APPROACHES["algebra"]

    @pytest.mark.asyncio
    async def test_transfer_problem(self, assessor):
        transfer = await assessor.generate_transfer_problem(make_problem(), "Isolating the variable")
        assert transfer.problem_text == "Solve for y: 3y + 2 = 11"
        assert transfer.original_problem_id == "P001"

    @pytest.mark.asyncio
    async def test_transfer_problem_failure_is_optional(self, assessor, fake_llm):
        fake_llm.replies["creating educational math problems"] = LLMError("rate limited")
        assert await assessor.generate_transfer_problem(make_problem(), "approach") is None

    @pytest.mark.asyncio
    async def test_verify_transfer_answer(self, assessor):
        transfer = TransferProblem(problem_text="Solve for y: 3y + 2 = 11", approach="isolate")
        assert await assessor.verify_transfer_answer(transfer, "y = 3") is True

    @pytest.mark.asyncio
    async def test_verify_transfer_unreadable_verdict(self, assessor, fake_llm):
        fake_llm.replies["verifying math answers"] = "probably"
        transfer = TransferProblem(problem_text="Solve for y: 3y + 2 = 11", approach="isolate")
        with pytest.raises(LLMError):
            await assessor.verify_transfer_answer(transfer, "y = 3")
