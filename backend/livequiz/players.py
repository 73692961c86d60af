"""Connected players: admission, per-player question cursor, disconnects."""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from .errors import ConflictError, InvalidCodeError, NameTakenError, NotActiveError
from .models import Emit, Join

if TYPE_CHECKING:
    from .session import SessionState
    from .storage import ResultStore

logger = logging.getLogger(__name__)


class Player(BaseModel):
    name: str
    branch: Optional[str] = ""
    year: Optional[str] = ""
    score: int = 0
    answers: Dict[int, Optional[int]] = Field(default_factory=dict)  # question id -> option index or None
    question_index: int = -1  # only ever increments within a session

    def reset(self) -> None:
        self.score = 0
        self.answers = {}
        self.question_index = -1


class PlayerRegistry:
    """Connection id -> Player. Disconnect is the only way a player leaves.

    With a store attached, a name that already has a saved result in the
    live quiz cannot be taken again until the quiz restarts.
    """

    def __init__(self, store: Optional["ResultStore"] = None) -> None:
        self._players: Dict[str, Player] = {}
        self.store = store

    def get(self, sid: str) -> Optional[Player]:
        return self._players.get(sid)

    def items(self) -> List[Tuple[str, Player]]:
        return list(self._players.items())

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    def __contains__(self, sid: object) -> bool:
        return sid in self._players

    def count(self) -> int:
        return len(self._players)

    def name_taken(self, name: str) -> bool:
        lowered = name.lower()
        return any(p.name.lower() == lowered for p in self._players.values())

    def reset_all(self) -> None:
        for player in self._players.values():
            player.reset()

    def count_event(self) -> Emit:
        return Emit("playerCount", {"count": self.count()})

    def join(self, sid: str, payload: Join, state: "SessionState") -> List[Emit]:
        if sid in self._players:
            raise ConflictError("Already joined.")
        if not state.is_active:
            raise NotActiveError()
        if payload.joinCode != state.join_code:
            raise InvalidCodeError()
        if self.name_taken(payload.name):
            raise NameTakenError()
        if self.store is not None and self.store.has_result(state.quiz_id, payload.name):
            raise NameTakenError()  # left mid-quiz; the saved result stays theirs

        self._players[sid] = Player(name=payload.name, branch=payload.branch, year=payload.year)
        logger.info("Player %r joined quiz %s (%d connected)", payload.name, state.quiz_id, self.count())

        effects = [self.count_event()]
        if state.launched:
            effects.append(Emit("quizStarted", {"quizName": state.quiz_name}, sid))
        else:
            effects.append(Emit("joined", {"name": payload.name}, sid))
        return effects

    def disconnect(self, sid: str) -> List[Emit]:
        player = self._players.pop(sid, None)
        if player is not None:
            logger.info("Player %r left (%d connected)", player.name, self.count())
        return [self.count_event()]

    def request_next(self, sid: str, state: "SessionState") -> List[Emit]:
        player = self._players.get(sid)
        if player is None or not state.is_active or not state.launched:
            return []
        player.question_index += 1
        question = state.question_at(player.question_index)
        if question is None:
            return [Emit("quizFinished", {"score": player.score}, sid)]
        return [Emit("question", {"question": question.to_player(), "index": player.question_index}, sid)]
