# Prompt templates and JSON schemas for the two hosted-model calls.
# The model only tidies and reviews what the reporter typed; it never decides
# which question comes next.

CORRECTION_PROMPT = """
You help members of the public fill in an FDA MedWatch adverse event report.
Each message gives you the question that was asked and the reporter's answer,
which may come from speech recognition and contain spelling or transcription errors.

Rules:
1) Correct spelling and obvious transcription mistakes only. Do not add facts, do not drop facts.
2) Keep dates, numbers, lot numbers, and codes exactly as given unless clearly misspelled words.
3) Summarize, in one sentence, what the reporter intends in relation to the question.
4) Say whether the reporter is talking about a medication, a medical device, or neither,
   as far as the answer shows. Use "medication", "medical device", "other", or "unknown".

You MUST output a single JSON object that conforms to the provided schema.
"""

CORRECTION_SCHEMA = {
  "name": "medwatch_answer_correction",
  "schema": {
    "type": "object",
    "additionalProperties": False,
    "properties": {
      "correctedText": {
        "type": "string",
        "description": "The reporter's answer with spelling corrected."
      },
      "intentSummary": {
        "type": "string",
        "description": "Brief summary of the reporter's intent for this question."
      },
      "productType": {
        "type": "string",
        "enum": ["medication", "medical device", "other", "unknown"],
        "description": "Type of product mentioned, if any."
      }
    },
    "required": ["correctedText", "intentSummary", "productType"]
  }
}

REVIEW_PROMPT = """
You perform a pre-submission review of an adverse event report draft, checking for
consistency, completeness, and potential privacy issues before it is submitted.

Provide feedback on the following aspects:
- Consistency Checks: look for inconsistencies (e.g., dates don't make sense).
- Completeness Score/Prompts: assess if critical information is missing
  (e.g., "You haven't specified the outcome of the event. Was it resolved?").
- Anonymization Check (for patient data): help ensure personally identifiable information
  (beyond what's required and consented to) isn't accidentally included in free-text fields.
- Clarity Assessment: flag ambiguous descriptions and suggest clarification.

You MUST output a single JSON object that conforms to the provided schema.
"""

REVIEW_SCHEMA = {
  "name": "medwatch_pre_submission_review",
  "schema": {
    "type": "object",
    "additionalProperties": False,
    "properties": {
      "consistencyCheck": {
        "type": "string",
        "description": "Inconsistencies found (e.g., dates don't make sense)."
      },
      "completenessScore": {
        "type": "string",
        "description": "Whether critical information is missing."
      },
      "anonymizationCheck": {
        "type": "string",
        "description": "Personally identifiable information that should not be in free-text fields."
      },
      "clarityAssessment": {
        "type": "string",
        "description": "Ambiguous descriptions and suggested clarifications."
      }
    },
    "required": ["consistencyCheck", "completenessScore", "anonymizationCheck", "clarityAssessment"]
  }
}


def correction_user_message(text: str, question: str) -> str:
    return f"Question: {question}\n\nText: {text}"


def review_user_message(report_draft: str) -> str:
    return f"Review the following report draft:\n\n{report_draft}"
