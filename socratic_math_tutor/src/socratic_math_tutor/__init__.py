"""Socratic Math Tutor - session, problem and dialogue logic for the tutoring backend."""

__version__ = "1.0.0"
