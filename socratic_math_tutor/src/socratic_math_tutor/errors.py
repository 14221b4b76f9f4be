"""
Application Errors

Exception hierarchy shared by the tutor services and the HTTP layer.
Each error carries the HTTP status and a machine-readable code so the
backend can render a consistent error envelope.
"""

from typing import Optional, Dict, Any


class AppError(Exception):
    """Base error with HTTP status and error code."""

    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        field = getattr(self, "field", None)
        if field:
            body["field"] = field
        return {"error": body}


class ValidationError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, 400, "VALIDATION_ERROR")
        self.field = field


class NotFoundError(AppError):
    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", 404, "NOT_FOUND")


class ConflictError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 409, "CONFLICT")


class AuthError(AppError):
    def __init__(self, message: str = "Authentication required", code: str = "AUTH_ERROR"):
        super().__init__(message, 401, code)


class StorageError(AppError):
    """Datastore failure (Supabase table or storage bucket)."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, 500, "STORAGE_ERROR")
        self.original_error = original_error


class LLMError(AppError):
    """
    OpenAI failure.

    Keeps the provider status code (401 unauthorized, 429 rate-limited)
    when the original error carries one.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        status = getattr(original_error, "status_code", None) or 500
        super().__init__(message, status, "OPENAI_ERROR")
        self.original_error = original_error


class ProblemRejectedError(AppError):
    """
    Submission that is not a usable math problem.

    Rendered flat as {error, message, fallback} so the client can offer
    manual input instead of the upload.
    """

    def __init__(self, error: str, message: str, fallback: Optional[Dict[str, Any]] = None, **extra):
        super().__init__(message, 400, error)
        self.fallback = fallback or {"type": "manual_input"}
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message, "fallback": self.fallback}
        body.update(self.extra)
        return body
