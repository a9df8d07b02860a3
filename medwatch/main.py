import logging
import os
import threading
import uuid
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from medwatch.config import get_settings
from medwatch.errors import CorrectionFailure, OutOfRangeCursor, PersistenceFailure, ReviewFailure
from medwatch.flow import QuestionFlowEngine, SessionState, Turn, render_transcript
from medwatch.llm import correct_text, review_report
from medwatch.questionnaire import load_questionnaire
from medwatch.safety import redact_lines, redact_pii_basic
from medwatch.storage import init_db, save_report

logger = logging.getLogger(__name__)

APP_NAME = "MedWatch AI Assistant"
_ROOT = os.path.dirname(__file__).rsplit(os.sep, 1)[0]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    load_questionnaire()  # fail fast on a broken question table
    init_db()
    yield


# NOTE: rate-limiting and real auth belong in front of this service.
app = FastAPI(title=APP_NAME, lifespan=lifespan)

app.mount("/static", StaticFiles(directory=os.path.join(_ROOT, "static")), name="static")
templates = Jinja2Templates(directory=os.path.join(_ROOT, "templates"))


# ---------
# Models
# ---------
class ChatRequest(BaseModel):
    session_id: Optional[str] = Field(None, description="Client session id; one turn in flight per id.")
    user_input: str = ""
    conversation_history: List[Turn] = Field(default_factory=list)
    current_question_index: int = 0
    report_data: Dict[str, str] = Field(default_factory=dict)
    password: Optional[str] = Field(None, description="Optional password if DEMO_PASSWORD is set.")


class ChatResponse(BaseModel):
    ok: bool
    response: str
    updated_conversation_history: List[Turn]
    next_question_index: int
    report_data: Dict[str, str]
    is_end_of_questions: bool
    intent_summary: Optional[str] = None
    product_type_hint: Optional[str] = None


class ReviewRequest(BaseModel):
    conversation_history: List[Turn] = Field(default_factory=list)
    transcript: Optional[str] = None
    password: Optional[str] = None


class ReviewResponse(BaseModel):
    ok: bool
    review: Dict[str, str]
    review_text: str


class SubmitRequest(BaseModel):
    report_id: Optional[str] = None
    conversation_history: List[Turn] = Field(default_factory=list)
    transcript: Optional[str] = None
    review: str = ""
    password: Optional[str] = None


class SubmitResponse(BaseModel):
    ok: bool
    report_id: str


# ---------
# Helpers
# ---------
def _check_password(provided: Optional[str]) -> None:
    settings = get_settings()
    if not settings.require_password:
        return
    if not provided or provided != settings.demo_password:
        raise HTTPException(status_code=401, detail="Unauthorized")


_in_flight: Set[str] = set()
_in_flight_lock = threading.Lock()


@contextmanager
def _exclusive_turn(session_id: Optional[str]) -> Iterator[None]:
    """Reject a second turn for a session while the first is still running."""
    if not session_id:
        yield
        return
    with _in_flight_lock:
        if session_id in _in_flight:
            raise HTTPException(status_code=409, detail="Previous answer is still being processed.")
        _in_flight.add(session_id)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(session_id)


def _transcript_from(transcript: Optional[str], history: List[Turn]) -> str:
    if transcript and transcript.strip():
        return transcript.strip()
    return render_transcript(history)


# ---------
# Routes
# ---------
@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    return templates.TemplateResponse(request, "index.html", {
        "app_name": APP_NAME,
        "require_password": get_settings().require_password,
    })


@app.get("/questions")
async def questions() -> Dict[str, Any]:
    q = load_questionnaire()
    bounds = q.section_map()
    return {
        "count": q.count,
        "product_type_index": q.product_type_index,
        "sections": [
            {**s.model_dump(), "start": bounds[s.key][0], "end": bounds[s.key][1]}
            for s in q.sections
            if s.key in bounds
        ],
        "questions": [qq.model_dump() for qq in q.questions],
    }


@app.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest):
    _check_password(req.password)

    state = SessionState(
        conversation_log=req.conversation_history,
        cursor=req.current_question_index,
        answers=req.report_data,
    )
    engine = QuestionFlowEngine(load_questionnaire(), correct_text)

    with _exclusive_turn(req.session_id):
        try:
            result = engine.advance(state, req.user_input)
        except OutOfRangeCursor as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        except CorrectionFailure as exc:
            logger.warning("Turn failed at question %d: %s", req.current_question_index, exc)
            raise HTTPException(
                status_code=502,
                detail="Sorry, I could not process that answer. Please send it again.",
            )

    if get_settings().allow_logging:
        # NOTE: logging PHI is dangerous; keep off by default
        logger.info("CHAT_TURN cursor=%d input=%s", result.state.cursor, redact_pii_basic(req.user_input))

    return ChatResponse(
        ok=True,
        response=result.response,
        updated_conversation_history=result.state.conversation_log,
        next_question_index=result.state.cursor,
        report_data=result.state.answers,
        is_end_of_questions=result.is_end_of_questions,
        intent_summary=result.intent_summary,
        product_type_hint=result.product_type_hint,
    )


@app.post("/review", response_model=ReviewResponse)
def review(req: ReviewRequest):
    _check_password(req.password)

    transcript = _transcript_from(req.transcript, req.conversation_history)
    if not transcript:
        raise HTTPException(status_code=400, detail="No conversation history available for review.")

    try:
        result = review_report(transcript)
    except ReviewFailure as exc:
        logger.warning("Review failed: %s", exc)
        raise HTTPException(status_code=502, detail="The report review is unavailable. Please try again.")

    return ReviewResponse(ok=True, review=result.model_dump(by_alias=True), review_text=result.as_text())


@app.post("/reports", response_model=SubmitResponse)
def submit_report(req: SubmitRequest):
    _check_password(req.password)

    transcript = _transcript_from(req.transcript, req.conversation_history)
    if not transcript:
        raise HTTPException(status_code=400, detail="Nothing to submit.")
    report_id = req.report_id or str(uuid.uuid4())

    if get_settings().allow_logging:
        logger.info("SUBMIT %s tail=%s", report_id, redact_lines(transcript.splitlines()[-2:]))

    try:
        save_report(report_id, transcript, req.review)
    except PersistenceFailure as exc:
        logger.error("Report %s not saved: %s", report_id, exc)
        return JSONResponse(status_code=503, content={
            "ok": False,
            "retryable": True,
            "report_id": report_id,
            "detail": "The report could not be saved. Please try submitting again.",
        })

    return SubmitResponse(ok=True, report_id=report_id)


@app.get("/healthz")
async def healthz():
    return {"ok": True}
