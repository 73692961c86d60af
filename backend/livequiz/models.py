from __future__ import annotations
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


class QuizStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


# --- Domain records (detached snapshots of stored rows) ---
class Quiz(BaseModel):
    id: int
    host_id: int
    name: str
    status: QuizStatus = QuizStatus.WAITING
    join_code: Optional[str] = None


class Question(BaseModel):
    id: int
    quiz_id: int
    text: str
    options: List[str]
    correct_option_index: int
    time_limit: int
    score: int
    negative_score: int
    image_url: Optional[str] = None

    def to_player(self) -> Dict[str, Any]:
        """Wire shape sent to players; the correct option stays on the server."""
        return {
            "id": self.id,
            "text": self.text,
            "options": list(self.options),
            "timeLimit": self.time_limit,
            "score": self.score,
            "negativeScore": self.negative_score,
            "imageUrl": self.image_url,
        }


class ResultRow(BaseModel):
    name: str
    branch: Optional[str] = None
    year: Optional[str] = None
    score: int
    finish_time: int
    answers: Dict[int, Optional[int]] = Field(default_factory=dict)


class LeaderboardEntry(BaseModel):
    name: str
    score: int


class Host(BaseModel):
    id: int
    email: str
    token: str


# --- Host API payloads ---
class CreateHostPayload(BaseModel):
    email: str


class CreateQuizPayload(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Quiz name required")
        return v


class QuestionPayload(BaseModel):
    text: str
    options: List[str]
    correctOptionIndex: int
    timeLimit: int = Field(default=30, gt=0)
    score: int = Field(default=10, ge=0)
    negativeScore: int = Field(default=0, ge=0)
    imageUrl: Optional[str] = None

    @model_validator(mode="after")
    def _check_options(self) -> "QuestionPayload":
        self.text = self.text.strip()
        if not self.text:
            raise ValueError("Question text must not be empty")
        self.options = [o.strip() for o in self.options]
        if len(self.options) < 2 or any(not o for o in self.options):
            raise ValueError("At least two non-empty options are required")
        if not 0 <= self.correctOptionIndex < len(self.options):
            raise ValueError("correctOptionIndex out of range")
        return self


# --- Inbound socket commands ---
class Connect(BaseModel):
    type: Literal["connect"] = "connect"


class Join(BaseModel):
    type: Literal["join"] = "join"
    name: str
    branch: Optional[str] = ""
    year: Optional[str] = ""
    joinCode: str

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name required")
        return v

    @field_validator("branch", "year", mode="before")
    @classmethod
    def _free_form(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class RequestNextQuestion(BaseModel):
    type: Literal["requestNextQuestion"] = "requestNextQuestion"


class SubmitAnswer(BaseModel):
    type: Literal["submitAnswer"] = "submitAnswer"
    optionIndex: Optional[int] = None


class GetLeaderboard(BaseModel):
    type: Literal["getLeaderboard"] = "getLeaderboard"


class Disconnect(BaseModel):
    type: Literal["disconnect"] = "disconnect"


Command = Annotated[
    Union[Connect, Join, RequestNextQuestion, SubmitAnswer, GetLeaderboard, Disconnect],
    Field(discriminator="type"),
]
COMMANDS: TypeAdapter = TypeAdapter(Command)


def parse_command(event: str, data: Any = None) -> BaseModel:
    """Build the command for a socket event; raises pydantic.ValidationError."""
    body = dict(data) if isinstance(data, dict) else {}
    body["type"] = event
    return COMMANDS.validate_python(body)


# --- Outbound events ---
class Emit(NamedTuple):
    event: str
    data: Dict[str, Any]
    to: Optional[str] = None  # None => every connection
