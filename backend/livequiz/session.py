"""The live session: what quiz is running right now, and the host controls over it."""

from __future__ import annotations
import logging
import secrets
import string
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field

from .errors import ConflictError, ForbiddenError, InvalidTransitionError, NotActiveError, NotFoundError, ValidationError
from .models import Emit, Question, QuizStatus
from .players import PlayerRegistry
from .storage import ResultStore

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits

# The only legal moves of the session status.
TRANSITIONS: FrozenSet[Tuple[QuizStatus, QuizStatus]] = frozenset(
    {
        (QuizStatus.WAITING, QuizStatus.ACTIVE),
        (QuizStatus.ACTIVE, QuizStatus.FINISHED),
        (QuizStatus.FINISHED, QuizStatus.WAITING),
    }
)


def generate_join_code(length: int = 6) -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


class SessionState(BaseModel):
    status: QuizStatus = QuizStatus.WAITING
    host_id: Optional[int] = None
    quiz_id: Optional[int] = None
    quiz_name: str = ""
    join_code: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)  # frozen at start
    launched: bool = False  # lobby mode: players may request questions

    @property
    def is_active(self) -> bool:
        return self.status == QuizStatus.ACTIVE

    def move_to(self, status: QuizStatus) -> None:
        if (self.status, status) not in TRANSITIONS:
            raise InvalidTransitionError(f"Cannot move quiz from {self.status.value} to {status.value}.")
        self.status = status

    def question_at(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None


class SessionController:
    """Single writer of SessionState: start, launch and end a quiz."""

    def __init__(
        self,
        state: SessionState,
        players: PlayerRegistry,
        store: ResultStore,
        admission_mode: str = "direct",
        join_code_length: int = 6,
    ):
        self.state = state
        self.players = players
        self.store = store
        self.admission_mode = admission_mode
        self.join_code_length = join_code_length

    @property
    def lobby_mode(self) -> bool:
        return self.admission_mode == "lobby"

    def status(self) -> Dict[str, object]:
        return {"status": self.state.status.value, "quizName": self.state.quiz_name}

    def start_quiz(self, host_id: int, quiz_id: int) -> List[Emit]:
        state = self.state
        if state.is_active:
            raise ConflictError()
        quiz = self.store.get_quiz(quiz_id, host_id=host_id)
        if quiz is None:
            raise NotFoundError("Quiz not found.")
        questions = self.store.get_active_questions_ordered(quiz_id)
        if not questions:
            raise ValidationError("This quiz has no questions.")

        join_code = generate_join_code(self.join_code_length)
        self.store.activate_quiz(host_id, quiz_id, join_code)

        state.move_to(QuizStatus.ACTIVE)
        state.host_id = host_id
        state.quiz_id = quiz_id
        state.quiz_name = quiz.name
        state.join_code = join_code
        state.questions = questions
        state.launched = not self.lobby_mode
        self.players.reset_all()
        logger.info("Quiz %s (%s) started by host %s with %d questions", quiz_id, quiz.name, host_id, len(questions))

        effects = []
        if state.launched:
            effects.append(Emit("quizStarted", {"quizName": quiz.name}))
        effects.append(Emit("leaderboardUpdate", {"results": [], "quizName": quiz.name}))
        return effects

    def launch_quiz(self, host_id: int) -> List[Emit]:
        """Release lobby-held players into the running quiz."""
        self._require_active_host(host_id)
        if self.state.launched:
            raise ConflictError("The quiz has already been launched.")
        self.state.launched = True
        logger.info("Quiz %s launched with %d players", self.state.quiz_id, self.players.count())
        return [Emit("quizStarted", {"quizName": self.state.quiz_name})]

    def end_quiz(self, host_id: int) -> List[Emit]:
        state = self.state
        self._require_active_host(host_id)
        self.store.set_quiz_status(state.quiz_id, QuizStatus.WAITING, None)

        state.move_to(QuizStatus.FINISHED)
        effects = [Emit("quizFinished", {"score": player.score}, sid) for sid, player in self.players.items()]
        logger.info("Quiz %s ended; %d players notified", state.quiz_id, len(effects))

        state.move_to(QuizStatus.WAITING)
        state.host_id = None
        state.quiz_id = None
        state.quiz_name = ""
        state.join_code = None
        state.questions = []
        state.launched = False
        return effects

    def _require_active_host(self, host_id: int) -> None:
        if not self.state.is_active:
            raise NotActiveError("No active quiz for this host.")
        if self.state.host_id != host_id:
            raise ForbiddenError("Only the host running the quiz can do that.")
