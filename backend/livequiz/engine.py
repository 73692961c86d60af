"""Command dispatch for the live quiz.

Each socket event becomes a command handled here to completion. Handlers
return the outbound events they produced instead of emitting them, so the
transport can send them in order once the state change is done.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List

import pydantic

from .answers import AnswerPipeline, now_ms
from .errors import QuizError, ValidationError
from .leaderboard import LeaderboardPublisher
from .models import (
    Connect,
    Disconnect,
    Emit,
    GetLeaderboard,
    Join,
    RequestNextQuestion,
    SubmitAnswer,
    parse_command,
)
from .players import PlayerRegistry
from .session import SessionController, SessionState
from .storage import ResultStore

logger = logging.getLogger(__name__)


def _first_error(exc: pydantic.ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    err = errors[0]
    loc = err.get("loc") or ()
    field = str(loc[-1]) if loc else ""
    return f"{field}: {err.get('msg')}" if field else str(err.get("msg"))


class QuizEngine:
    def __init__(
        self,
        store: ResultStore,
        admission_mode: str = "direct",
        join_code_length: int = 6,
        leaderboard_size: int = 20,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.state = SessionState()
        self.players = PlayerRegistry(store)
        self.controller = SessionController(
            self.state,
            self.players,
            store,
            admission_mode=admission_mode,
            join_code_length=join_code_length,
        )
        self.leaderboard = LeaderboardPublisher(self.state, store, size=leaderboard_size)
        self.answers = AnswerPipeline(self.state, self.players, store, self.leaderboard, clock=clock)

    # --- host operations ---
    def start_quiz(self, host_id: int, quiz_id: int) -> List[Emit]:
        return self.controller.start_quiz(host_id, quiz_id)

    def launch_quiz(self, host_id: int) -> List[Emit]:
        return self.controller.launch_quiz(host_id)

    def end_quiz(self, host_id: int) -> List[Emit]:
        return self.controller.end_quiz(host_id)

    def status(self) -> Dict[str, Any]:
        out = self.controller.status()
        out["playerCount"] = self.players.count()
        return out

    def player_count_for(self, host_id: int, quiz_id: int) -> int:
        if self.state.is_active and self.state.host_id == host_id and self.state.quiz_id == quiz_id:
            return self.players.count()
        return 0

    def is_live(self, quiz_id: int) -> bool:
        return self.state.is_active and self.state.quiz_id == quiz_id

    # --- connection events ---
    def dispatch(self, sid: str, event: str, data: Any = None) -> List[Emit]:
        """Parse a raw socket event and handle it; bad payloads become an error event."""
        try:
            command = parse_command(event, data)
        except pydantic.ValidationError as exc:
            logger.info("Rejected %s from %s: %s", event, sid, exc.error_count())
            return [Emit("error", {"message": ValidationError(_first_error(exc)).message}, sid)]
        return self.handle(sid, command)

    def handle(self, sid: str, command: Any) -> List[Emit]:
        if isinstance(command, Disconnect):
            return self.players.disconnect(sid)
        try:
            if isinstance(command, Connect):
                return [Emit("quizState", self.controller.status(), sid), self.players.count_event()]
            if isinstance(command, Join):
                return self.players.join(sid, command, self.state)
            if isinstance(command, RequestNextQuestion):
                return self.players.request_next(sid, self.state)
            if isinstance(command, SubmitAnswer):
                return self.answers.submit(sid, command.optionIndex)
            if isinstance(command, GetLeaderboard):
                return [self.leaderboard.update_event(sid)]
        except QuizError as exc:
            logger.info("Rejected %s from %s: %s", type(command).__name__, sid, exc.message)
            return [Emit("error", {"message": exc.message}, sid)]
        raise TypeError(f"Unknown command {command!r}")
