"""
FastAPI Backend for the Socratic Math Tutor

Provides REST API endpoints for:
- Tutoring sessions identified by 6-character codes
- Problem submission (typed text or photo upload)
- Socratic chat turns, the post-solution quiz and transfer problems
- The password-protected teacher dashboard
"""

from fastapi import FastAPI, Depends, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from dotenv import load_dotenv
import os
import sys
import time

load_dotenv()
load_dotenv('../.env')

# Add the socratic_math_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'socratic_math_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.logger import setup_logging, get_logger, level_from_env

setup_logging(level=level_from_env(), use_colors=True)

logger = get_logger("backend.main")

from socratic_math_tutor.dashboard import DashboardService, create_dashboard_token
from socratic_math_tutor.errors import AppError, ValidationError
from socratic_math_tutor.llm_utils import create_llm_client
from socratic_math_tutor.tutor import MathTutor

from lib.supabase_client import get_supabase_client
from lib.auth import require_dashboard_auth

# Singletons so the OpenAI and Supabase clients are created once
_tutor_instance: Optional[MathTutor] = None
_dashboard_instance: Optional[DashboardService] = None


def get_tutor_instance() -> MathTutor:
    """Get or create singleton MathTutor instance."""
    global _tutor_instance
    if _tutor_instance is None:
        supabase = get_supabase_client()
        _tutor_instance = MathTutor(create_llm_client(), supabase_client=supabase)
        logger.info("MathTutor initialized", data={
            "storage": "supabase" if supabase else "memory",
        })
    return _tutor_instance


def get_dashboard_instance(tutor: MathTutor = Depends(get_tutor_instance)) -> DashboardService:
    global _dashboard_instance
    if _dashboard_instance is None or _dashboard_instance.session_manager is not tutor.sessions:
        _dashboard_instance = DashboardService(tutor.sessions, tutor.images)
    return _dashboard_instance


app = FastAPI(
    title="Socratic Math Tutor API",
    description="REST API for a Socratic K-12 math tutor",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        os.getenv("FRONTEND_URL", "http://localhost:5173"),
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Error handling ====================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed", error=exc)
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", error=exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"message": "Internal server error", "code": "INTERNAL_ERROR"}},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    logger.request(request.method, request.url.path)
    response = await call_next(request)
    logger.response(response.status_code, f"{request.method} {request.url.path}", time.time() - start)
    return response


# ==================== Pydantic Models ====================

class SessionRequest(BaseModel):
    session_code: Optional[str] = None


class ProblemText(BaseModel):
    text: Optional[str] = None


class ProblemSelection(BaseModel):
    problemText: Optional[str] = None
    imageKey: Optional[str] = None


class ChatRequest(BaseModel):
    message: Optional[str] = None
    mc_answer: Optional[int] = None
    question_id: Optional[str] = None
    transfer_answer: Optional[str] = None


class LoginRequest(BaseModel):
    password: Optional[str] = None


class ProblemTagUpdate(BaseModel):
    category: Optional[str] = Field(default=None)
    difficulty: Optional[str] = Field(default=None)


# ==================== API Endpoints ====================

@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api/sessions")
async def create_or_resume_session(
    response: Response,
    body: Optional[SessionRequest] = None,
    tutor: MathTutor = Depends(get_tutor_instance),
):
    """Resume the session for `session_code`, or create a new one (201). The body is optional."""
    result = await tutor.create_or_resume_session(body.session_code if body else None)
    response.status_code = 201 if result["created"] else 200
    return result["session"]


@app.get("/api/sessions/{code}")
async def get_session(code: str, tutor: MathTutor = Depends(get_tutor_instance)):
    return await tutor.get_session_view(code)


@app.post("/api/sessions/{code}/problems")
async def submit_problem(
    code: str,
    request: Request,
    response: Response,
    tutor: MathTutor = Depends(get_tutor_instance),
):
    """
    Submit a problem as JSON `{text}` or as multipart form data with
    `text` and/or an `image` file.
    """
    text = None
    image = None

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        text = form.get("text")
        upload = form.get("image")
        if upload is not None and hasattr(upload, "read"):
            image = {
                "data": await upload.read(),
                "filename": upload.filename,
                "content_type": upload.content_type,
            }
    else:
        try:
            payload = ProblemText(**(await request.json()))
        except (ValueError, TypeError) as e:
            raise ValidationError("Request body must be JSON with a text field", "text") from e
        text = payload.text

    result = await tutor.submit_problem(code, text=text, image=image)
    response.status_code = 200 if result.get("multiple_problems") else 201
    return result


@app.post("/api/sessions/{code}/problems/select", status_code=201)
async def select_problem(
    code: str,
    body: ProblemSelection,
    tutor: MathTutor = Depends(get_tutor_instance),
):
    return await tutor.select_problem(code, body.problemText, body.imageKey)


@app.post("/api/sessions/{code}/chat")
async def chat(code: str, body: ChatRequest, tutor: MathTutor = Depends(get_tutor_instance)):
    """
    One chat turn. The body carries exactly one of:
    `message`, `mc_answer` + `question_id`, or `transfer_answer`.
    """
    return await tutor.chat(
        code,
        message=body.message,
        mc_answer=body.mc_answer,
        question_id=body.question_id,
        transfer_answer=body.transfer_answer,
    )


# ==================== Dashboard ====================

@app.post("/api/dashboard/login")
async def dashboard_login(body: LoginRequest):
    return create_dashboard_token(body.password)


@app.get("/api/dashboard/stats/aggregate", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_aggregate_stats(dashboard: DashboardService = Depends(get_dashboard_instance)):
    return await dashboard.get_aggregate_stats()


@app.get("/api/dashboard/sessions", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_sessions(dashboard: DashboardService = Depends(get_dashboard_instance)):
    return {"sessions": await dashboard.get_sessions_with_stats()}


@app.get("/api/dashboard/sessions/{code}", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_session_details(code: str, dashboard: DashboardService = Depends(get_dashboard_instance)):
    return await dashboard.get_session_details(code)


@app.get("/api/dashboard/sessions/{code}/similar-problems", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_similar_problems(code: str, tutor: MathTutor = Depends(get_tutor_instance)):
    return await tutor.similar_problems_for_session(code)


@app.put("/api/dashboard/sessions/{code}/problems/{problem_id}", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_update_problem(
    code: str,
    problem_id: str,
    body: ProblemTagUpdate,
    dashboard: DashboardService = Depends(get_dashboard_instance),
):
    return await dashboard.update_problem_tags(code, problem_id, body.category, body.difficulty)


@app.delete("/api/dashboard/sessions/{code}", dependencies=[Depends(require_dashboard_auth)])
async def dashboard_delete_session(code: str, dashboard: DashboardService = Depends(get_dashboard_instance)):
    return await dashboard.delete_session(code)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.section("SERVER STARTUP", {"port": port})
    uvicorn.run(app, host="0.0.0.0", port=port)
