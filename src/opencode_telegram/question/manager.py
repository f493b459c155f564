from __future__ import annotations

from dataclasses import dataclass, field

from ..logging import get_logger
from ..model import Question, QuestionAnswer, QuestionOption

logger = get_logger(__name__)


def format_option(option: QuestionOption) -> str:
    if option.description:
        return f"{option.label}: {option.description}"
    return option.label


@dataclass(slots=True)
class QuestionState:
    questions: list[Question] = field(default_factory=list)
    current_index: int = 0
    selected: dict[int, list[int]] = field(default_factory=dict)
    custom_answers: dict[int, str] = field(default_factory=dict)
    message_ids: list[int] = field(default_factory=list)
    active: bool = False
    request_id: str | None = None


class QuestionManager:
    """Single active poll: questions, selections, custom answers and messages."""

    def __init__(self) -> None:
        self._state = QuestionState()

    def start(self, questions: list[Question], request_id: str) -> list[int]:
        """Start a new poll and return the message ids of the one it replaces."""
        previous = list(self._state.message_ids)
        if self._state.active:
            logger.info(
                "question.poll_replaced",
                previous_request_id=self._state.request_id,
                request_id=request_id,
            )
        self._state = QuestionState(
            questions=list(questions), active=True, request_id=request_id
        )
        logger.info(
            "question.poll_started", request_id=request_id, questions=len(questions)
        )
        return previous

    @property
    def request_id(self) -> str | None:
        return self._state.request_id

    @property
    def is_active(self) -> bool:
        return self._state.active

    @property
    def current_index(self) -> int:
        return self._state.current_index

    @property
    def total_questions(self) -> int:
        return len(self._state.questions)

    @property
    def questions(self) -> list[Question]:
        return list(self._state.questions)

    def question(self, index: int) -> Question | None:
        if 0 <= index < len(self._state.questions):
            return self._state.questions[index]
        return None

    def current_question(self) -> Question | None:
        return self.question(self._state.current_index)

    def select_option(self, question_index: int, option_index: int) -> None:
        if not self._state.active:
            return
        question = self.question(question_index)
        if question is None or not 0 <= option_index < len(question.options):
            return
        selected = self._state.selected.setdefault(question_index, [])
        if question.multiple:
            if option_index in selected:
                selected.remove(option_index)
            else:
                selected.append(option_index)
        else:
            selected[:] = [option_index]
        logger.debug(
            "question.selected", question=question_index, options=list(selected)
        )

    def selected_options(self, question_index: int) -> frozenset[int]:
        return frozenset(self._state.selected.get(question_index, ()))

    def selected_answer(self, question_index: int) -> list[str]:
        question = self.question(question_index)
        if question is None:
            return []
        return [
            format_option(question.options[idx])
            for idx in sorted(self._state.selected.get(question_index, ()))
        ]

    def set_custom_answer(self, question_index: int, answer: str) -> None:
        logger.debug("question.custom_answer", question=question_index)
        self._state.custom_answers[question_index] = answer

    def custom_answer(self, question_index: int) -> str | None:
        return self._state.custom_answers.get(question_index)

    def has_custom_answer(self, question_index: int) -> bool:
        return question_index in self._state.custom_answers

    def next_question(self) -> None:
        self._state.current_index += 1
        logger.debug(
            "question.next",
            index=self._state.current_index,
            total=len(self._state.questions),
        )

    def has_next_question(self) -> bool:
        return self._state.current_index < len(self._state.questions)

    def add_message_id(self, message_id: int) -> None:
        self._state.message_ids.append(message_id)

    @property
    def message_ids(self) -> list[int]:
        return list(self._state.message_ids)

    def cancel(self) -> None:
        logger.info("question.poll_cancelled", request_id=self._state.request_id)
        self._state.active = False

    def collect_answers(self) -> list[list[str]]:
        answers: list[list[str]] = []
        for index in range(len(self._state.questions)):
            custom = self._state.custom_answers.get(index)
            if custom:
                answers.append([custom])
            else:
                answers.append(self.selected_answer(index))
        return answers

    def answered(self) -> list[QuestionAnswer]:
        result = []
        for index, question in enumerate(self._state.questions):
            answer = self._state.custom_answers.get(index) or "\n".join(
                self.selected_answer(index)
            )
            if answer:
                result.append(QuestionAnswer(question=question.question, answer=answer))
        return result

    def reset(self) -> None:
        self._state = QuestionState()
