from __future__ import annotations

from typing import Literal, NotRequired, TypedDict

type TeamId = Literal[1, 2]
type SessionStatus = Literal["waiting", "running", "ended"]
type ScoreAction = Literal["increment", "decrement", "reset"]
type CommandAction = Literal["start", "stop", "end", "reset", "request_state", "open_pairing", "close_pairing"]
type Winner = Literal["team1", "team2", "draw"]


class LocationStatsJson(TypedDict):
    locationId: str
    days: int
    totalMatches: int
    team1Wins: int
    team2Wins: int
    draws: int
    averageDuration: NotRequired[float | None]
