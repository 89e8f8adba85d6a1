"""Wire models for MQTT payloads and history records.

Payloads on the wire use camelCase keys; attributes are snake_case.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scorely.types import CommandAction, ScoreAction, SessionStatus, TeamId, Winner


class _WireModel(BaseModel):
    # Allow firmware/front-ends to add fields without breaking.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ScoreEvent(_WireModel):
    """Score button press sent by a bracelet on `session/{id}/event`."""

    device_id: str = Field(min_length=1)
    team: TeamId
    action: ScoreAction
    timestamp: int = Field(ge=0)  # ms since epoch, device clock
    event_id: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"{self.device_id}_{self.timestamp}"


class SessionCommand(_WireModel):
    """Lifecycle/pairing command sent on `session/{id}/command`."""

    action: CommandAction
    duration: int | None = Field(default=None, gt=0)  # ms, open_pairing only
    timestamp: int | None = None
    initiated_by: str | None = None


class PairingRequest(_WireModel):
    """Sent by a bracelet on the shared `pairing/request` channel."""

    device_id: str = Field(min_length=1)
    timestamp: int | None = None
    session_id: str | None = None


class PairingResponse(_WireModel):
    """Sent back on `pairing/response/{deviceId}`."""

    status: Literal["ok", "error"]
    session_id: str | None = None
    team: TeamId | None = None
    topic: str | None = None
    error: str | None = None


class TeamScore(_WireModel):
    team1: int = Field(default=0, ge=0)
    team2: int = Field(default=0, ge=0)


class TeamDevices(_WireModel):
    team1: list[str] = Field(default_factory=list)
    team2: list[str] = Field(default_factory=list)


class StateSnapshot(_WireModel):
    """Retained projection of a session, published on `session/{id}/state`."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: TeamScore
    status: SessionStatus
    paired_devices: TeamDevices
    last_update: int
    timestamp: int


class MatchRecord(_WireModel):
    """Final record handed to the match history store when a session ends."""

    match_id: str
    session_id: str
    location_id: str
    final_score: TeamScore
    winner: Winner
    started_at: int
    ended_at: int
    duration: int  # ms
    paired_devices: TeamDevices


class CreateSessionBody(_WireModel):
    location_id: str = Field(min_length=1)
