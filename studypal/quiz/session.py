import logging
from enum import Enum
from typing import List, Optional, Tuple

from studypal.core.types import QuizData, QuizQuestion, UserAnswer

logger = logging.getLogger(__name__)


class QuizPhase(str, Enum):
    ANSWERING = "answering"
    SUBMITTED = "submitted"
    RESULTS = "results"


class QuizSession:
    """
    answering(i) -> submitted(i) -> answering(i + 1) -> ... -> results

    Calls made in the wrong phase are ignored and return False, matching the
    disabled buttons of the quiz card.
    """

    def __init__(self, quiz: QuizData):
        self.quiz = quiz
        self.phase = QuizPhase.ANSWERING
        self.question_index = 0
        self.selected_option: Optional[int] = None
        self._answers: List[UserAnswer] = []

    @property
    def total(self) -> int:
        return len(self.quiz.questions)

    @property
    def answers(self) -> Tuple[UserAnswer, ...]:
        return tuple(self._answers)

    @property
    def current_question(self) -> Optional[QuizQuestion]:
        if self.phase is QuizPhase.RESULTS:
            return None
        return self.quiz.questions[self.question_index]

    @property
    def is_last_question(self) -> bool:
        return self.question_index == self.total - 1

    @property
    def can_submit(self) -> bool:
        return self.phase is QuizPhase.ANSWERING and self.selected_option is not None

    @property
    def can_advance(self) -> bool:
        return self.phase is QuizPhase.SUBMITTED

    @property
    def last_answer(self) -> Optional[UserAnswer]:
        return self._answers[-1] if self._answers else None

    @property
    def revealed_answer(self) -> Optional[Tuple[int, str]]:
        """(correct option index, explanation) once the current question is submitted."""
        if self.phase is not QuizPhase.SUBMITTED:
            return None
        question = self.quiz.questions[self.question_index]
        return question.correct_answer_index, question.explanation

    def select_option(self, option_index: int) -> bool:
        if self.phase is not QuizPhase.ANSWERING:
            return False
        if not 0 <= option_index < len(self.quiz.questions[self.question_index].options):
            return False
        self.selected_option = option_index
        return True

    def submit(self) -> bool:
        if not self.can_submit:
            return False
        question = self.quiz.questions[self.question_index]
        answer = UserAnswer(
            question_index=self.question_index,
            selected_option_index=self.selected_option,
            is_correct=self.selected_option == question.correct_answer_index,
        )
        self._answers.append(answer)
        self.phase = QuizPhase.SUBMITTED
        return True

    def next(self) -> bool:
        if not self.can_advance:
            return False
        self.selected_option = None
        if self.is_last_question:
            self.phase = QuizPhase.RESULTS
            logger.info("[Quiz] Finished '%s': %s", self.quiz.title, self.summary_line())
        else:
            self.question_index += 1
            self.phase = QuizPhase.ANSWERING
        return True

    def restart(self) -> None:
        self.phase = QuizPhase.ANSWERING
        self.question_index = 0
        self.selected_option = None
        self._answers = []

    # --- results ---

    @property
    def score(self) -> int:
        return sum(1 for a in self._answers if a.is_correct)

    @property
    def percentage(self) -> int:
        # round-half-up, so 2/8 -> 25 and 1/8 -> 13
        return int(self.score * 100 / self.total + 0.5)

    @property
    def is_perfect(self) -> bool:
        return self.phase is QuizPhase.RESULTS and self.score == self.total

    def summary_line(self) -> str:
        return f"You scored {self.score} out of {self.total} ({self.percentage}%)"
