from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .models import LeaderboardEntry, Phase, PlayerStats


# Inbound messages. ``type`` is the discriminator of the closed union below.
class CreateSessionIn(BaseModel):
    type: Literal["create-session"] = "create-session"
    quiz_id: str
    host_key: Optional[str] = None


class RestartSessionIn(BaseModel):
    type: Literal["restart-session"] = "restart-session"
    identifier: str
    host_key: Optional[str] = None


class JoinIn(BaseModel):
    type: Literal["join"] = "join"
    code: str
    nickname: str = Field(default="", max_length=40)


class StartGameIn(BaseModel):
    type: Literal["start"] = "start"
    code: str


class ContinueIn(BaseModel):
    type: Literal["continue"] = "continue"
    code: str


class AnswerIn(BaseModel):
    type: Literal["submit-answer"] = "submit-answer"
    code: str
    question_id: str
    answer_ids: List[str] = Field(default_factory=list)


class WordIn(BaseModel):
    type: Literal["submit-word"] = "submit-word"
    code: str
    word: str = ""


class AdvanceIn(BaseModel):
    type: Literal["advance"] = "advance"
    code: str


# Built by the transport when a socket closes, never parsed off the wire.
class DisconnectIn(BaseModel):
    type: Literal["disconnect"] = "disconnect"


InboundMessage = Annotated[
    Union[
        CreateSessionIn,
        RestartSessionIn,
        JoinIn,
        StartGameIn,
        ContinueIn,
        AnswerIn,
        WordIn,
        AdvanceIn,
    ],
    Field(discriminator="type"),
]

INBOUND_KINDS = (
    CreateSessionIn,
    RestartSessionIn,
    JoinIn,
    StartGameIn,
    ContinueIn,
    AnswerIn,
    WordIn,
    AdvanceIn,
    DisconnectIn,
)

inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Dict[str, Any]):
    return inbound_adapter.validate_python(data)


# HTTP views
class PublicPlayerOut(BaseModel):
    nickname: str
    color: str
    score: int
    connected: bool


class PublicSessionOut(BaseModel):
    code: str
    quiz_id: str
    title: str
    phase: Phase
    players: List[PublicPlayerOut]
    current_question_idx: int
    total_questions: int
    question_deadline_ts: Optional[float] = None


class ResultsOut(BaseModel):
    code: str
    leaderboard: List[LeaderboardEntry]
    stats: List[PlayerStats]
