import json
import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator

from medwatch.config import get_settings
from medwatch.errors import QuestionnaireError

DEFAULT_PATH = os.path.join(os.path.dirname(__file__), "data", "questionnaire.json")

SectionCondition = Literal["always", "not_device", "device"]


class Section(BaseModel):
    key: str
    title: str
    condition: SectionCondition = "always"


class Question(BaseModel):
    index: int = Field(..., ge=0)
    section: str
    text: str


class Questionnaire(BaseModel):
    """
    Ordered MedWatch question table.

    Sections are contiguous runs of questions. Exactly one section is asked only
    for non-device products and one only for medical devices; the engine skips
    whichever does not apply.
    """
    product_type_index: int
    sections: List[Section]
    questions: List[Question]

    @model_validator(mode="after")
    def _check_layout(self) -> "Questionnaire":
        if not self.questions:
            raise ValueError("questionnaire has no questions")
        for pos, q in enumerate(self.questions):
            if q.index != pos:
                raise ValueError(f"question indices must be contiguous from 0 (got {q.index} at {pos})")

        declared = [s.key for s in self.sections]
        if len(set(declared)) != len(declared):
            raise ValueError("duplicate section keys")

        # each section must be one unbroken run, in declared order
        seen: List[str] = []
        for q in self.questions:
            if q.section not in declared:
                raise ValueError(f"question {q.index} references unknown section {q.section!r}")
            if not seen or seen[-1] != q.section:
                if q.section in seen:
                    raise ValueError(f"section {q.section!r} is not contiguous")
                seen.append(q.section)
        if seen != [k for k in declared if k in seen]:
            raise ValueError("sections appear out of declared order")

        for cond in ("not_device", "device"):
            matches = [s for s in self.sections if s.condition == cond and s.key in seen]
            if len(matches) != 1:
                raise ValueError(f"expected exactly one {cond!r} section with questions")

        start, end = self.bounds(self.product_section)
        if not start <= self.product_type_index < end:
            raise ValueError("product type question must sit inside the non-device section")
        if self.bounds(self.device_section)[0] != end:
            raise ValueError("device section must directly follow the non-device section")
        return self

    # ---------
    # Lookups
    # ---------
    @property
    def count(self) -> int:
        return len(self.questions)

    @property
    def product_section(self) -> str:
        return next(s.key for s in self.sections if s.condition == "not_device")

    @property
    def device_section(self) -> str:
        return next(s.key for s in self.sections if s.condition == "device")

    @property
    def product_type_key(self) -> str:
        return self.key(self.product_type_index)

    @staticmethod
    def key(index: int) -> str:
        return f"question_{index}"

    def text(self, index: int) -> str:
        return self.questions[index].text

    def bounds(self, section: str) -> Tuple[int, int]:
        """Returns (first index, one past last index) of a section."""
        idx = [q.index for q in self.questions if q.section == section]
        if not idx:
            raise KeyError(section)
        return idx[0], idx[-1] + 1

    def section_map(self) -> Dict[str, Tuple[int, int]]:
        return {s.key: self.bounds(s.key) for s in self.sections if any(q.section == s.key for q in self.questions)}


@lru_cache(maxsize=8)
def _load(path: str) -> Questionnaire:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise QuestionnaireError(f"cannot read questionnaire {path}: {exc}") from exc
    try:
        return Questionnaire.model_validate(raw)
    except ValidationError as exc:
        raise QuestionnaireError(f"invalid questionnaire {path}: {exc}") from exc


def load_questionnaire(path: Optional[str] = None) -> Questionnaire:
    return _load(path or get_settings().questionnaire_path or DEFAULT_PATH)
