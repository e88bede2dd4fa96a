"""
Find and validate the <quiz_data> block a chat reply carries when the user asks for a quiz.

Wire format, embedded anywhere in the reply text:

    <quiz_data>
    {"title": "...", "questions": [{"questionText": "...", "options": ["..."],
      "correctAnswerIndex": 0, "explanation": "..."}]}
    </quiz_data>
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ValidationError

from studypal.core.errors import QuizFormatError
from studypal.core.types import QuizData

QUIZ_OPEN_TAG = "<quiz_data>"
QUIZ_CLOSE_TAG = "</quiz_data>"

# Case-sensitive, non-greedy, spans newlines
QUIZ_BLOCK_PATTERN = re.compile(r"<quiz_data>([\s\S]*?)</quiz_data>")


class QuizOutcome(str, Enum):
    NONE = "none"
    QUIZ = "quiz"
    MALFORMED = "malformed"


class QuizParseResult(BaseModel):
    outcome: QuizOutcome
    quiz: Optional[QuizData] = None
    error: Optional[str] = None

    class Config:
        frozen = True


def find_quiz_block(text: str) -> Optional[str]:
    """Return the raw payload between the first pair of quiz tags, or None."""
    match = QUIZ_BLOCK_PATTERN.search(text)
    if match is None:
        return None
    return match.group(1)


def parse_quiz(text: str) -> Optional[QuizData]:
    """
    Parse the quiz embedded in a chat reply.

    Returns None when the reply carries no quiz at all. Raises QuizFormatError
    when a quiz was attempted but is unusable: bad JSON, a shape that does not
    match QuizData, an empty question list, an out-of-range answer index, or an
    opening tag that is never closed.
    """
    payload = find_quiz_block(text)
    if payload is None:
        if QUIZ_OPEN_TAG in text:
            raise QuizFormatError("Quiz block was opened but never closed")
        return None
    if not payload.strip():
        raise QuizFormatError("Quiz block is empty")
    try:
        return QuizData.model_validate_json(payload.strip())
    except ValidationError as e:
        raise QuizFormatError(f"Invalid quiz payload: {e.error_count()} problem(s), first: {e.errors()[0]['msg']}") from e


def try_parse_quiz(text: str) -> QuizParseResult:
    """Non-raising form of parse_quiz for callers that branch on the outcome."""
    try:
        quiz = parse_quiz(text)
    except QuizFormatError as e:
        return QuizParseResult(outcome=QuizOutcome.MALFORMED, error=str(e))
    if quiz is None:
        return QuizParseResult(outcome=QuizOutcome.NONE)
    return QuizParseResult(outcome=QuizOutcome.QUIZ, quiz=quiz)


def format_quiz_block(quiz: QuizData) -> str:
    """Serialize a quiz into the same delimited block the model is asked to produce."""
    return f"{QUIZ_OPEN_TAG}{quiz.model_dump_json(by_alias=True)}{QUIZ_CLOSE_TAG}"
