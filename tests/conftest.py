"""
Shared fixtures: an in-process fake of the AsyncOpenAI client.

The fake answers each chat completion by matching the system prompt
against a table of canned replies, so tests can steer one step of a flow
(e.g. make the validator say INVALID) without mocking the rest.
"""

import json
import os
import re
import sys
from types import SimpleNamespace

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from socratic_math_tutor.session_manager import SessionManager


MC_QUESTIONS = [
    {
        "question": "How did we solve this problem?",
        "options": ["Added numbers", "Isolated the variable", "Multiplied everything", "Guessed"],
        "correct_answer_index": 1,
    },
    {
        "question": "What did we do first?",
        "options": ["Divided by 2", "Subtracted 5", "Added 13", "Multiplied by x"],
        "correct_answer_index": 1,
    },
    {
        "question": "Why did we divide by 2?",
        "options": ["To get x by itself", "To make it bigger", "Because 2 is even", "No reason"],
        "correct_answer_index": 0,
    },
]


def _quoted(text: str, label: str) -> str:
    match = re.search(rf'{label}: "(.*?)"', text, re.DOTALL)
    return match.group(1) if match else text


def _solution_verdict(messages):
    prompt = messages[-1]["content"]
    if "transfer problem" in prompt:
        return json.dumps({"is_correct": True, "reasoning": "y = 3 is right"})
    latest = _quoted(prompt, "Student's latest message")
    done = "x = 4" in latest
    return json.dumps({"solution_completed": done, "is_correct": done})


DEFAULT_REPLIES = {
    "math notation converter": lambda messages: "```latex\n2x + 5 = 13\n```",
    "math problem detector": "YES",
    "math problem parser": lambda messages: "SINGLE: " + _quoted(messages[-1]["content"], "Text"),
    "math problem validator": "VALID",
    "patient, encouraging math tutor": "What are we trying to find in this equation?",
    "verifying math answers": _solution_verdict,
    "problem-solving approaches": "Isolating the variable with inverse operations",
    "multiple choice questions": json.dumps(MC_QUESTIONS),
    "creating educational math problems": "Solve for y: 3y + 2 = 11",
    "math problem generator": "1. Solve for x: 3x + 4 = 10\n2. Solve for x: 5x - 2 = 13\n3. Solve for x: 4x + 1 = 9",
    "vision extract": "Solve for x: 2x + 5 = 13",
    "vision verify": "MATCHES",
}


class FakeChatCompletions:
    def __init__(self, owner):
        self.owner = owner

    async def create(self, **kwargs):
        self.owner.calls.append(kwargs)
        messages = kwargs["messages"]
        if isinstance(messages[0]["content"], list):
            prompt = messages[0]["content"][0]["text"]
            reply = self.owner.replies["vision verify" if prompt.startswith("Does the text") else "vision extract"]
        else:
            system = messages[0]["content"] if messages[0]["role"] == "system" else ""
            reply = ""
            for marker, canned in self.owner.replies.items():
                if marker in system:
                    reply = canned
                    break

        if isinstance(reply, Exception):
            raise reply
        content = reply(messages) if callable(reply) else reply
        return SimpleNamespace(
            model=kwargs.get("model"),
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=10, total_tokens=20),
        )


class FakeEmbeddings:
    FEATURES = "xyz+-*/=0123456789"

    def __init__(self, owner):
        self.owner = owner

    async def create(self, model, input):
        self.owner.embedded.append(input)
        vector = [float(input.count(ch)) for ch in self.FEATURES] + [1.0]
        return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


class FakeLLM:
    """Stand-in for AsyncOpenAI exposing chat.completions and embeddings."""

    def __init__(self):
        self.replies = dict(DEFAULT_REPLIES)
        self.calls = []
        self.embedded = []
        self.chat = SimpleNamespace(completions=FakeChatCompletions(self))
        self.embeddings = FakeEmbeddings(self)

    def calls_with(self, marker: str):
        return [
            call for call in self.calls
            if isinstance(call["messages"][0]["content"], str) and marker in call["messages"][0]["content"]
        ]


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def session_manager():
    return SessionManager()
