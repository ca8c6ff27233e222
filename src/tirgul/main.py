import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import date
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import uvicorn
from fastapi import Cookie, Depends, FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .bank import QuestionBank
from .config import settings
from .errors import EngineError
from .exam import ExamSectionMachine
from .models import (
    AnswerResult,
    AttemptListItem,
    AttemptStarted,
    CurrentSection,
    ExamSummary,
    Identity,
    PracticeStarted,
    PracticeStats,
    PracticeSummary,
    ProgressSummary,
    QuestionType,
    QuestionView,
    SectionScore,
    TrendPoint,
)
from .practice import PracticeFlow
from .progress import ProgressService
from .store import create_store

logger = logging.getLogger("tirgul")


# --- Logging Setup ---
def setup_logging() -> None:
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return
    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)


# --- Services ---
store = create_store(settings.STORE_BACKEND)
question_bank = QuestionBank(settings.QUESTION_BANK_DIR, store)
exam_machine = ExamSectionMachine(store)
practice_flow = PracticeFlow(store)
progress_service = ProgressService(store)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    question_bank.load_all()
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# --- Request Models ---
class SubmitAnswerRequest(BaseModel):
    question_id: str
    selected_option_id: Optional[str] = None
    text_answer: Optional[str] = None
    time_ms: Optional[int] = None


class StartPracticeRequest(BaseModel):
    type: QuestionType


# --- Dependencies ---
def get_exam_machine() -> ExamSectionMachine:
    return exam_machine


def get_practice_flow() -> PracticeFlow:
    return practice_flow


def get_progress_service() -> ProgressService:
    return progress_service


def get_user_id(
    user_id: Optional[str] = Header(None, alias=settings.USER_HEADER_NAME),
) -> Optional[str]:
    return user_id


def get_identity(
    response: Response,
    user_id: Optional[str] = Depends(get_user_id),
    guest_id: Optional[str] = Cookie(None, alias=settings.GUEST_COOKIE_NAME),
) -> Identity:
    if user_id:
        return Identity(user_id=user_id)
    if not guest_id:
        guest_id = str(uuid.uuid4())
        response.set_cookie(
            key=settings.GUEST_COOKIE_NAME,
            value=guest_id,
            httponly=True,
            samesite="Lax",
        )
    return Identity(guest_id=guest_id)


# --- Exam Routes ---
@app.post("/api/v1/exam/start", response_model=AttemptStarted)
def start_exam(
    user_id: Optional[str] = Depends(get_user_id),
    machine: ExamSectionMachine = Depends(get_exam_machine),
):
    return machine.start_attempt(user_id)


@app.get("/api/v1/exam/{attempt_id}/section/current", response_model=CurrentSection)
def get_current_section(
    attempt_id: str,
    user_id: Optional[str] = Depends(get_user_id),
    machine: ExamSectionMachine = Depends(get_exam_machine),
):
    return machine.get_current_section(attempt_id, user_id)


@app.post("/api/v1/exam/{attempt_id}/answer", response_model=AnswerResult)
def submit_exam_answer(
    attempt_id: str,
    request: SubmitAnswerRequest,
    user_id: Optional[str] = Depends(get_user_id),
    machine: ExamSectionMachine = Depends(get_exam_machine),
):
    return machine.submit_answer(
        attempt_id,
        user_id,
        request.question_id,
        selected_option_id=request.selected_option_id,
        raw_text=request.text_answer,
        time_ms=request.time_ms,
    )


@app.post("/api/v1/exam/{attempt_id}/section/confirm-finish", response_model=SectionScore)
def confirm_finish_section(
    attempt_id: str,
    user_id: Optional[str] = Depends(get_user_id),
    machine: ExamSectionMachine = Depends(get_exam_machine),
):
    return machine.confirm_finish_section(attempt_id, user_id)


@app.post("/api/v1/exam/{attempt_id}/finish", response_model=ExamSummary)
def finish_exam(
    attempt_id: str,
    user_id: Optional[str] = Depends(get_user_id),
    machine: ExamSectionMachine = Depends(get_exam_machine),
):
    return machine.finish_exam(attempt_id, user_id)


# --- Practice Routes ---
@app.post("/api/v1/practice/start", response_model=PracticeStarted)
def start_practice(
    request: StartPracticeRequest,
    identity: Identity = Depends(get_identity),
    flow: PracticeFlow = Depends(get_practice_flow),
):
    return flow.start_session(request.type, identity)


@app.get("/api/v1/practice/{session_id}/questions", response_model=List[QuestionView])
def get_practice_questions(
    session_id: str,
    identity: Identity = Depends(get_identity),
    flow: PracticeFlow = Depends(get_practice_flow),
):
    return flow.get_questions(session_id, identity)


@app.post("/api/v1/practice/{session_id}/answer", response_model=AnswerResult)
def submit_practice_answer(
    session_id: str,
    request: SubmitAnswerRequest,
    identity: Identity = Depends(get_identity),
    flow: PracticeFlow = Depends(get_practice_flow),
):
    return flow.submit_answer(
        session_id,
        identity,
        request.question_id,
        selected_option_id=request.selected_option_id,
        raw_text=request.text_answer,
        time_ms=request.time_ms,
    )


@app.post("/api/v1/practice/{session_id}/finish", response_model=PracticeSummary)
def finish_practice(
    session_id: str,
    identity: Identity = Depends(get_identity),
    flow: PracticeFlow = Depends(get_practice_flow),
):
    return flow.finish_session(session_id, identity)


# --- Progress Routes ---
@app.get("/api/v1/progress/summary", response_model=ProgressSummary)
def get_progress_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.summary(user_id, start_date, end_date)


@app.get("/api/v1/progress/trend", response_model=List[TrendPoint])
def get_progress_trend(
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.trend(user_id)


@app.get("/api/v1/progress/attempts", response_model=List[AttemptListItem])
def get_recent_attempts(
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.recent_attempts(user_id, limit)


@app.get("/api/v1/progress/practice", response_model=PracticeStats)
def get_practice_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.practice_summary(user_id, start_date, end_date)


@app.get("/api/v1/progress/practice/trend", response_model=List[TrendPoint])
def get_practice_trend(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.practice_trend(user_id, start_date, end_date)


@app.get("/api/v1/progress/attempts/{attempt_id}", response_model=ExamSummary)
def get_attempt_detail(
    attempt_id: str,
    user_id: Optional[str] = Depends(get_user_id),
    progress: ProgressService = Depends(get_progress_service),
):
    return progress.attempt_detail(attempt_id, user_id)


@app.get("/api/v1/questions/counts")
def get_question_counts():
    return question_bank.get_counts()


if __name__ == "__main__":
    uvicorn.run("tirgul.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
