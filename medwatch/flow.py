import logging
import re
from enum import Enum
from typing import Callable, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

from medwatch.errors import OutOfRangeCursor
from medwatch.questionnaire import Questionnaire

logger = logging.getLogger(__name__)

COMPLETION_MESSAGE = "Thank you! All questions have been answered. Would you like me to summarize the report?"

# Vocabulary matched against the explicit product-type answer, on word boundaries.
DEVICE_ANSWER_RE = re.compile(r"\bmedical devices?\b", re.IGNORECASE)
MEDICATION_ANSWER_RE = re.compile(r"\b(?:medicines?|prescriptions?|over-the-counter)\b", re.IGNORECASE)
OTHER_ANSWER_RE = re.compile(r"\b(?:cosmetics?|dietary supplements?|foods?|others?)\b", re.IGNORECASE)

# Fallback vocabulary scanned over what the user has said so far.
DEVICE_KEYWORDS = ("medical device", "device")
MEDICATION_KEYWORDS = ("medicine", "medication", "pill", "syrup", "injection")


class ProductClass(str, Enum):
    MEDICATION = "medication"
    DEVICE = "device"
    OTHER = "other"
    UNKNOWN = "unknown"


# ---------
# Models
# ---------
class Turn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SessionState(BaseModel):
    conversation_log: List[Turn] = Field(default_factory=list)
    cursor: int = 0
    answers: Dict[str, str] = Field(default_factory=dict)


class Correction(BaseModel):
    corrected_text: str
    intent_summary: Optional[str] = None
    product_type: Optional[str] = None


class TurnResult(BaseModel):
    state: SessionState
    response: str
    is_end_of_questions: bool = False
    intent_summary: Optional[str] = None
    product_type_hint: Optional[str] = None


Corrector = Callable[[str, str], Correction]


# ---------
# Branch classification
# ---------
def _matches(text: str, terms: Iterable[str]) -> bool:
    return any(term in text for term in terms)


def _classify_answer(answer: str) -> ProductClass:
    # A device mention wins over anything else in the answer.
    if DEVICE_ANSWER_RE.search(answer):
        return ProductClass.DEVICE
    if MEDICATION_ANSWER_RE.search(answer):
        return ProductClass.MEDICATION
    if OTHER_ANSWER_RE.search(answer):
        return ProductClass.OTHER
    return ProductClass.UNKNOWN


def _classify_keywords(texts: Iterable[str]) -> ProductClass:
    blob = " ".join(texts).lower()
    device = _matches(blob, DEVICE_KEYWORDS)
    medication = _matches(blob, MEDICATION_KEYWORDS)
    if device and medication:
        return ProductClass.UNKNOWN
    if device:
        return ProductClass.DEVICE
    if medication:
        return ProductClass.MEDICATION
    return ProductClass.UNKNOWN


def classify_product(
    answers: Dict[str, str],
    conversation_log: List[Turn],
    questionnaire: Questionnaire,
    pending: str = "",
) -> ProductClass:
    """
    Decide medication vs. medical device vs. other.

    The explicit product-type answer wins whenever it names a product type, with
    "medical device" taking precedence over any other term in it. Otherwise every
    user turn (plus the answer being recorded) is scanned for keywords; text that
    mentions both vocabularies stays UNKNOWN.
    """
    explicit = answers.get(questionnaire.product_type_key)
    if explicit:
        found = _classify_answer(explicit)
        if found is not ProductClass.UNKNOWN:
            return found
    said = [t.content for t in conversation_log if t.role == "user"]
    if pending:
        said.append(pending)
    return _classify_keywords(said)


def render_transcript(conversation_log: List[Turn]) -> str:
    return "\n".join(f"{t.role}: {t.content}" for t in conversation_log)


# ---------
# Engine
# ---------
class QuestionFlowEngine:
    """Stateless question sequencer. All session state goes in and comes back out."""

    def __init__(self, questionnaire: Questionnaire, corrector: Corrector) -> None:
        self.questionnaire = questionnaire
        self.corrector = corrector

    def _resolve_branch(self, next_cursor: int, product: ProductClass) -> int:
        q = self.questionnaire
        device_start, device_end = q.bounds(q.device_section)

        # Anything not identified as a device takes the non-device path.
        if product is not ProductClass.DEVICE and device_start <= next_cursor < device_end:
            logger.info("Skipping device section (%s): %d -> %d", product.value, next_cursor, device_end)
            return device_end
        if product is ProductClass.DEVICE and q.product_type_index < next_cursor < device_start:
            logger.info("Skipping product section (device): %d -> %d", next_cursor, device_start)
            return device_start
        return next_cursor

    def advance(self, state: SessionState, raw_input: str) -> TurnResult:
        q = self.questionnaire
        if state.cursor < 0:
            raise OutOfRangeCursor(f"cursor must be >= 0, got {state.cursor}")

        user_text = (raw_input or "").strip()
        cursor = min(state.cursor, q.count)
        answers = dict(state.answers)
        intent_summary = None
        product_hint = None
        finished = False

        if not state.conversation_log:
            cursor = 0
            response = q.text(0)
        elif cursor < q.count:
            # CorrectionFailure propagates; nothing below has been committed yet.
            correction = self.corrector(user_text, q.text(cursor))
            corrected = correction.corrected_text
            intent_summary = correction.intent_summary
            product_hint = correction.product_type

            answers[q.key(cursor)] = corrected
            product = classify_product(answers, state.conversation_log, q, pending=corrected)
            next_cursor = self._resolve_branch(cursor + 1, product)

            response = f"Okay, I have recorded: {corrected.rstrip('.')}. "
            if next_cursor < q.count:
                response += q.text(next_cursor)
            else:
                response += COMPLETION_MESSAGE
                finished = True
            cursor = next_cursor
        else:
            response = COMPLETION_MESSAGE
            finished = True

        log = list(state.conversation_log)
        log.append(Turn(role="user", content=user_text))
        log.append(Turn(role="assistant", content=response))

        return TurnResult(
            state=SessionState(conversation_log=log, cursor=cursor, answers=answers),
            response=response,
            is_end_of_questions=finished,
            intent_summary=intent_summary,
            product_type_hint=product_hint,
        )
