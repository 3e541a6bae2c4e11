from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Literal
from enum import Enum
from datetime import datetime, timezone
import uuid


def utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Team(str, Enum):
    RED = "red"
    BLUE = "blue"


class CardOwner(str, Enum):
    RED = "red"
    BLUE = "blue"
    NEUTRAL = "neutral"
    ASSASSIN = "assassin"


class SeatType(str, Enum):
    HUMAN = "human"
    AGENT = "agent"


class SeatRole(str, Enum):
    SPYMASTER = "spymaster"
    OPERATIVE = "operative"


class Phase(str, Enum):
    HINT = "hint"
    GUESS = "guess"
    BANTER = "banter"    # chat-only intermission between turns


class ProposalKind(str, Enum):
    GUESS = "guess"
    END_TURN = "end_turn"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class VoteDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class MessageKind(str, Enum):
    CHAT = "chat"
    PROPOSAL = "proposal"
    SYSTEM = "system"


def other_team(team: Team) -> Team:
    return Team.BLUE if team == Team.RED else Team.RED


def owner_for(team: Team) -> CardOwner:
    return CardOwner(team.value)


BOARD_SIZE = 25

# Board composition keyed by owner; must sum to BOARD_SIZE.
OWNER_DISTRIBUTION: Dict[CardOwner, int] = {
    CardOwner.RED: 8,
    CardOwner.BLUE: 8,
    CardOwner.NEUTRAL: 8,
    CardOwner.ASSASSIN: 1,
}

# Author id for system messages. Not a seat.
SYSTEM_PLAYER_ID = "system"
SYSTEM_PLAYER_NAME = "System"


# ── Errors ────────────────────────────────────────────────────────────────────

class GameNotFoundError(LookupError):
    pass


class GameRuleError(ValueError):
    """A rejected action. The message is the reason shown to the caller."""


class GameOverError(GameRuleError):
    pass


class NotTeamMemberError(GameRuleError):
    pass


class NotYourTurnError(GameRuleError):
    pass


class WrongPhaseError(GameRuleError):
    pass


class InvalidHintError(GameRuleError):
    pass


class WordNotOnBoardError(GameRuleError):
    pass


class WordAlreadyRevealedError(GameRuleError):
    pass


class ProposalPendingError(GameRuleError):
    pass


class ProposalNotFoundError(GameRuleError):
    pass


class ProposalResolvedError(GameRuleError):
    pass


class OwnProposalVoteError(GameRuleError):
    pass


# ── Game state ────────────────────────────────────────────────────────────────

class Card(BaseModel):
    word: str
    owner: CardOwner
    revealed: bool = False


class Seat(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    name: str
    type: SeatType
    role: SeatRole
    team: Team
    personality: Optional[str] = None     # prompt fragment for agent seats
    model_override: Optional[str] = None  # wins over GameState.agent_model
    voice: Optional[str] = None           # narration voice id


class TurnState(BaseModel):
    active_team: Team
    phase: Phase = Phase.HINT
    hint_word: Optional[str] = None
    hint_count: Optional[int] = None
    hint_targets: Optional[List[str]] = None
    guesses_made: int = 0
    max_guesses: int = 0
    previous_team: Optional[Team] = None  # outgoing team, set on entering banter


class Proposal(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    team: Team
    kind: ProposalKind
    word: Optional[str] = None  # payload of a guess proposal
    status: ProposalStatus = ProposalStatus.PENDING
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    votes: Dict[str, VoteDecision] = {}   # seat id -> decision, last write wins


class Message(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    team: Team
    player_id: str
    player_name: str
    kind: MessageKind
    content: str
    proposal_id: Optional[str] = None
    phase: Phase
    created_at: datetime = Field(default_factory=utcnow)


def _team_flags() -> Dict[Team, bool]:
    return {Team.RED: False, Team.BLUE: False}


def _team_proposals() -> Dict[Team, List[Proposal]]:
    return {Team.RED: [], Team.BLUE: []}


class GameState(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8].upper())
    cards: List[Card]
    seats: Dict[str, Seat]
    turn: TurnState
    messages: List[Message] = []
    proposals: Dict[Team, List[Proposal]] = Field(default_factory=_team_proposals)
    winner: Optional[Team] = None
    win_reason: Optional[str] = None
    agent_model: str = ""
    neutral_mode: bool = False
    deliberating: Dict[Team, bool] = Field(default_factory=_team_flags)
    paused: Dict[Team, bool] = Field(default_factory=_team_flags)
    last_error: Optional[str] = None      # sticky agent infrastructure error
    end_game_banter_done: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def team_seats(self, team: Team) -> List[Seat]:
        return [s for s in self.seats.values() if s.team == team]

    def card_for(self, word: str) -> Optional[Card]:
        needle = word.strip().lower()
        for card in self.cards:
            if card.word.lower() == needle:
                return card
        return None

    def board_words(self) -> List[str]:
        return [c.word.lower() for c in self.cards]

    def remaining(self, owner: CardOwner) -> int:
        return sum(1 for c in self.cards if c.owner == owner and not c.revealed)

    def pending_proposal(self, team: Team) -> Optional[Proposal]:
        for proposal in self.proposals[team]:
            if proposal.status == ProposalStatus.PENDING:
                return proposal
        return None

    def find_proposal(self, team: Team, proposal_id: str) -> Optional[Proposal]:
        for proposal in self.proposals[team]:
            if proposal.id == proposal_id:
                return proposal
        return None


# ── HTTP request models ───────────────────────────────────────────────────────

class AgentSeatConfig(BaseModel):
    name: Optional[str] = None
    model: Optional[str] = None
    personality: Optional[str] = None


class CreateGameRequest(BaseModel):
    human_name: str = "You"
    human_team: Team = Team.RED
    human_role: Literal["spymaster", "operative", "spectator"] = "operative"
    agent_counts: Dict[Team, int] = {}
    agent_configs: Dict[Team, List[AgentSeatConfig]] = {}
    agent_model: Optional[str] = None
    neutral_mode: bool = False  # agents play without personality fragments


class ChatRequest(BaseModel):
    team: Team
    player_id: str
    content: str


class HintRequest(BaseModel):
    team: Team
    player_id: str
    word: str
    count: int
    targets: Optional[List[str]] = None


class ProposalRequest(BaseModel):
    team: Team
    player_id: str
    kind: ProposalKind
    word: Optional[str] = None


class VoteRequest(BaseModel):
    team: Team
    player_id: str
    decision: VoteDecision


class PauseRequest(BaseModel):
    player_id: str
    paused: bool = True


class NarrationModeRequest(BaseModel):
    enabled: bool
