import re
from typing import List

# Naive PII redaction, applied only to text written to logs.
# Reports themselves keep the reporter's contact details.
_EMAIL_RE = re.compile(r"[\w\.-]+@[\w\.-]+\.\w+")
_PHONE_RE = re.compile(r"\b(\+?\d[\d\s\-]{7,}\d)\b")
_ADDRESS_RE = re.compile(r"\b(\d{1,5}\s+\w+(\s+\w+){1,5}\s+(st|street|rd|road|ave|avenue|blvd|boulevard|dr|drive|ln|lane|ct|court)\b)", re.IGNORECASE)


def redact_pii_basic(text: str) -> str:
    if not text:
        return text
    text = _EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    text = _PHONE_RE.sub("[REDACTED_PHONE]", text)
    text = _ADDRESS_RE.sub("[REDACTED_ADDRESS]", text)
    return text


def redact_lines(lines: List[str]) -> List[str]:
    return [redact_pii_basic(ln) for ln in lines]
