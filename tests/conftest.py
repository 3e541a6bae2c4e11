"""Pytest configuration and fixtures."""
from typing import Callable, Dict, List, Optional

import pytest

from config import settings
from models.game import (
    Card, CardOwner, GameState, Seat, SeatRole, SeatType, Team, TurnState, VoteDecision,
)
from services.game_store import GameStore
from agents.agent_port import (
    ActionType, AgentAction, AgentPort, AgentResponse, AgentSituation,
)
from agents.delivery_gate import DeliveryGateManager
from agents.deliberation import Deliberator
from agents.game_master import GameMaster

RED_WORDS = ["apple", "bridge", "castle", "dragon", "engine", "forest", "garden", "harbor"]
BLUE_WORDS = ["island", "jungle", "kettle", "lantern", "magnet", "needle", "ocean", "piano"]
NEUTRAL_WORDS = ["queen", "rocket", "shadow", "tiger", "umbrella", "violin", "wagon", "zebra"]
ASSASSIN_WORD = "bomb"


def make_cards() -> List[Card]:
    return (
        [Card(word=w, owner=CardOwner.RED) for w in RED_WORDS]
        + [Card(word=w, owner=CardOwner.BLUE) for w in BLUE_WORDS]
        + [Card(word=w, owner=CardOwner.NEUTRAL) for w in NEUTRAL_WORDS]
        + [Card(word=ASSASSIN_WORD, owner=CardOwner.ASSASSIN)]
    )


def make_game(
    red_operatives: int = 1,
    blue_operatives: int = 1,
    active: Team = Team.RED,
    human_team: Optional[Team] = None,
    human_role: SeatRole = SeatRole.OPERATIVE,
) -> GameState:
    """
    Fixed board and seat layout.

    Seat ids: "<team>-spy" for agent spymasters, "<team>-op-<n>" for agent
    operatives and "human" for the optional human seat. A human spymaster
    replaces the agent spymaster; a human operative joins the agent ones.
    """
    seats: Dict[str, Seat] = {}
    for team, operatives in ((Team.RED, red_operatives), (Team.BLUE, blue_operatives)):
        if not (team == human_team and human_role == SeatRole.SPYMASTER):
            seats[f"{team.value}-spy"] = Seat(
                id=f"{team.value}-spy", name=f"{team.value.capitalize()}-Spy",
                type=SeatType.AGENT, role=SeatRole.SPYMASTER, team=team,
            )
        for n in range(1, operatives + 1):
            seat_id = f"{team.value}-op-{n}"
            seats[seat_id] = Seat(
                id=seat_id, name=f"{team.value.capitalize()}-{n}",
                type=SeatType.AGENT, role=SeatRole.OPERATIVE, team=team,
            )
    if human_team is not None:
        seats["human"] = Seat(id="human", name="You", type=SeatType.HUMAN, role=human_role, team=human_team)
    return GameState(
        id="TEST0001",
        cards=make_cards(),
        seats=seats,
        turn=TurnState(active_team=active),
        agent_model="test-model",
    )


# ── Scripted agent port ───────────────────────────────────────────────────────

def say(message: str) -> AgentResponse:
    return AgentResponse(message=message)


def hint(word: str, count: int) -> AgentResponse:
    return AgentResponse(message="...", action=AgentAction(type=ActionType.HINT, word=word, count=count))


def guess(word: str, message: str = "") -> AgentResponse:
    return AgentResponse(message=message, action=AgentAction(type=ActionType.PROPOSE_GUESS, word=word))


def end_turn(message: str = "") -> AgentResponse:
    return AgentResponse(message=message, action=AgentAction(type=ActionType.PROPOSE_END_TURN))


def vote(proposal_id: str, decision: str = "accept") -> AgentResponse:
    return AgentResponse(action=AgentAction(
        type=ActionType.VOTE, proposal_id=proposal_id, decision=VoteDecision(decision),
    ))


def agreeable(situation: AgentSituation) -> AgentResponse:
    """Votes accept on anyone else's pending proposal, otherwise stays quiet."""
    theirs = [p for p in situation.pending_proposals if p.created_by != situation.seat.id]
    if theirs:
        return vote(theirs[0].id, "accept")
    return say("...")


class ScriptedPort(AgentPort):
    """
    Returns queued responses per seat id (an Exception in the queue is raised),
    then falls back to `handler`. Every situation it sees is kept in `calls`.
    """

    def __init__(self, handler: Callable[[AgentSituation], AgentResponse] = agreeable):
        self.handler = handler
        self.queues: Dict[str, list] = {}
        self.calls: List[AgentSituation] = []

    def script(self, seat_id: str, *responses):
        self.queues.setdefault(seat_id, []).extend(responses)

    async def respond(self, situation: AgentSituation) -> AgentResponse:
        self.calls.append(situation)
        queue = self.queues.get(situation.seat.id)
        item = queue.pop(0) if queue else self.handler(situation)
        if isinstance(item, Exception):
            raise item
        return item


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def store() -> GameStore:
    return GameStore()


@pytest.fixture
def master(store) -> GameMaster:
    return GameMaster(store)


@pytest.fixture
def port() -> ScriptedPort:
    return ScriptedPort()


@pytest.fixture
def gates() -> DeliveryGateManager:
    return DeliveryGateManager(capacity=5, timeout=0.05)


@pytest.fixture
def test_settings():
    return settings.model_copy(update={"max_autoplay_turns": 20})


@pytest.fixture
def deliberator(store, master, port, gates, test_settings) -> Deliberator:
    return Deliberator(store=store, master=master, port=port, gates=gates, config=test_settings)
