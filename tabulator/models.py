from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    JUDGED = "JUDGED"
    QUIZ = "QUIZ"


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    EVENT_ADMIN = "EVENT_ADMIN"
    JUDGE = "JUDGE"


class Criterion(BaseModel):
    id: str = Field(min_length=1)
    name: str
    weight: float = Field(ge=0)  # maximum achievable points
    description: Optional[str] = None


class Round(BaseModel):
    id: str = Field(min_length=1)
    name: str
    points: float = Field(ge=0)  # points per item
    is_tie_breaker: bool = False


class JudgedFormat(BaseModel):
    type: Literal["JUDGED"] = "JUDGED"
    criteria: List[Criterion] = []

    @property
    def fields(self) -> List[Criterion]:
        return self.criteria


class QuizFormat(BaseModel):
    type: Literal["QUIZ"] = "QUIZ"
    rounds: List[Round] = []

    @property
    def fields(self) -> List[Round]:
        return self.rounds


EventFormat = Annotated[Union[JudgedFormat, QuizFormat], Field(discriminator="type")]


class Event(BaseModel):
    id: str = Field(min_length=1)
    name: str
    format: EventFormat
    is_locked: bool = False
    event_admin_id: Optional[str] = None

    @property
    def type(self) -> EventType:
        return EventType(self.format.type)


class Participant(BaseModel):
    id: str = Field(min_length=1)
    name: str
    district: str
    event_id: str


class Score(BaseModel):
    id: str = Field(min_length=1)
    judge_id: str
    participant_id: str
    event_id: str
    entries: Dict[str, float] = {}
    deductions: float = Field(default=0.0, ge=0)
    total_score: float = Field(default=0.0, ge=0)
    critique: Optional[str] = None


class User(BaseModel):
    id: str = Field(min_length=1)
    name: str
    role: UserRole = UserRole.JUDGE
    assigned_event_id: Optional[str] = None
    email: Optional[str] = None
    # synthesized from auth claims, never read from the store
    is_fallback: bool = False
