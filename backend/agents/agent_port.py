"""
Agent Response Port — the contract between the deliberation scheduler and
whatever language model plays an agent seat.

Given an AgentSituation (seat, team, game snapshot, pending proposals and a
bounded chat history), a port returns an AgentResponse: a short message plus
exactly one action. Ports may fail; they signal infrastructure trouble with
AgentPortError and unparseable output with AgentResponseFormatError.

Also home to the pure helpers every port implementation needs: the masked
board view, the alternating transcript and the JSON response parser.
"""
import json
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from models.game import GameState, Proposal, Seat, SeatRole, Team, VoteDecision


class AgentPortError(RuntimeError):
    """The model backend could not be reached or refused the request."""


class AgentResponseFormatError(AgentPortError):
    """The model answered but the answer is not a usable response."""


# ── Response ──────────────────────────────────────────────────────────────────

class ActionType(str, Enum):
    NONE = "none"
    HINT = "hint"
    PROPOSE_GUESS = "propose_guess"
    PROPOSE_END_TURN = "propose_end_turn"
    VOTE = "vote"


class AgentAction(BaseModel):
    type: ActionType = ActionType.NONE
    word: Optional[str] = None
    count: Optional[int] = None
    targets: Optional[List[str]] = None
    proposal_id: Optional[str] = None
    decision: Optional[VoteDecision] = None


PLACEHOLDER_MESSAGE = "..."


class AgentResponse(BaseModel):
    message: str = ""
    action: AgentAction = Field(default_factory=AgentAction)

    @property
    def has_message(self) -> bool:
        """False for empty or placeholder messages, which are never posted."""
        text = self.message.strip()
        return bool(text) and text != PLACEHOLDER_MESSAGE


# ── Situation ─────────────────────────────────────────────────────────────────

class SituationMode(str, Enum):
    TURN = "turn"                         # normal action
    REVEAL_REACTION = "reveal_reaction"   # flavor message after a correct guess
    END_GAME = "end_game"                 # post-game banter


class ChatLine(BaseModel):
    name: str
    content: str


class TranscriptEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AgentSituation(BaseModel):
    game: GameState
    seat: Seat
    team: Team
    mode: SituationMode = SituationMode.TURN
    pending_proposals: List[Proposal] = []
    history: List[ChatLine] = []
    rejected_hints: List[str] = []

    @property
    def resolved_model(self) -> str:
        return self.seat.model_override or self.game.agent_model


class AgentPort(ABC):

    @abstractmethod
    async def respond(self, situation: AgentSituation) -> AgentResponse:
        """Decide the seat's next message and action."""


# ── Helpers ───────────────────────────────────────────────────────────────────

def visible_board(game: GameState, seat: Seat) -> str:
    """Board as the seat may see it: owners only for spymasters or revealed cards."""
    parts = []
    for card in game.cards:
        if card.revealed:
            parts.append(f"[{card.word}: {card.owner.value}]")
        elif seat.role == SeatRole.SPYMASTER:
            parts.append(f"{card.word}({card.owner.value})")
        else:
            parts.append(card.word)
    return ", ".join(parts)


def build_transcript(
    seat_name: str,
    history: List[ChatLine],
    closing_prompt: str,
    limit: int = 30,
) -> List[TranscriptEntry]:
    """
    Turn chat lines into a strictly alternating user/assistant transcript.

    The seat's own lines become assistant turns; everyone else's are user
    turns prefixed with the speaker's name. Consecutive same-role turns are
    merged, the transcript never opens with an assistant turn, and the
    closing prompt always ends it as (part of) a user turn.
    """
    entries: List[TranscriptEntry] = []
    for line in history[-limit:] if limit > 0 else []:
        if line.name == seat_name:
            role, content = "assistant", line.content
        else:
            role, content = "user", f"{line.name}: {line.content}"
        if entries and entries[-1].role == role:
            entries[-1].content += "\n" + content
        else:
            entries.append(TranscriptEntry(role=role, content=content))

    while entries and entries[0].role == "assistant":
        entries.pop(0)

    if entries and entries[-1].role == "user":
        entries[-1].content += "\n\n" + closing_prompt
    else:
        entries.append(TranscriptEntry(role="user", content=closing_prompt))
    return entries


_THINK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


def extract_json(raw: str) -> Any:
    """
    Pull the JSON object out of a model reply.
    Tries the whole reply, then a fenced block, then the outermost braces.
    """
    cleaned = _THINK_RE.sub("", raw or "").strip()
    candidates = []
    if cleaned.startswith("{") and cleaned.endswith("}"):
        candidates.append(cleaned)
    fenced = _FENCE_RE.search(cleaned)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())
    first, last = cleaned.find("{"), cleaned.rfind("}")
    if first >= 0 and last > first:
        candidates.append(cleaned[first:last + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise AgentResponseFormatError(f"Not valid JSON: {(raw or '')[:300]}")


def parse_response(data: Any) -> AgentResponse:
    """Validate the action shape. Unknown or missing actions become `none`."""
    if not isinstance(data, dict):
        raise AgentResponseFormatError("Response must be an object")
    message = data.get("message")
    message = message.strip() if isinstance(message, str) else ""
    action: Dict[str, Any] = data.get("action") if isinstance(data.get("action"), dict) else {}
    kind = action.get("type")

    if kind == ActionType.HINT.value:
        word = action.get("word")
        count = action.get("count")
        if not isinstance(word, str) or not word.strip():
            raise AgentResponseFormatError("hint needs a word")
        if isinstance(count, bool) or not isinstance(count, (int, float)) or count < 1:
            raise AgentResponseFormatError("hint needs count >= 1")
        targets = action.get("targets")
        if not isinstance(targets, list):
            targets = None
        else:
            targets = [t for t in targets if isinstance(t, str)]
        return AgentResponse(message=message, action=AgentAction(
            type=ActionType.HINT, word=word.strip(), count=int(count), targets=targets,
        ))

    if kind == ActionType.PROPOSE_GUESS.value:
        word = action.get("word")
        if not isinstance(word, str) or not word.strip():
            raise AgentResponseFormatError("propose_guess needs a word")
        return AgentResponse(message=message, action=AgentAction(type=ActionType.PROPOSE_GUESS, word=word.strip()))

    if kind == ActionType.PROPOSE_END_TURN.value:
        return AgentResponse(message=message, action=AgentAction(type=ActionType.PROPOSE_END_TURN))

    if kind == ActionType.VOTE.value:
        proposal_id = action.get("proposalId", action.get("proposal_id"))
        decision = action.get("decision")
        if not isinstance(proposal_id, str) or not proposal_id:
            raise AgentResponseFormatError("vote needs a proposalId")
        if decision not in (VoteDecision.ACCEPT.value, VoteDecision.REJECT.value):
            raise AgentResponseFormatError("vote needs accept or reject")
        return AgentResponse(message=message, action=AgentAction(
            type=ActionType.VOTE, proposal_id=proposal_id, decision=VoteDecision(decision),
        ))

    return AgentResponse(message=message or PLACEHOLDER_MESSAGE)
