"""
Game HTTP endpoints.

Routes:
  POST /api/games                                        — Create game, start autoplay
  GET  /api/games/{game_id}                              — Full snapshot (records a client poll)
  POST /api/games/{game_id}/chat                         — Team chat message
  POST /api/games/{game_id}/hint                         — Spymaster hint
  POST /api/games/{game_id}/proposals                    — Propose a guess or ending the turn
  POST /api/games/{game_id}/proposals/{proposal_id}/vote — Vote on a pending proposal
  POST /api/games/{game_id}/teams/{team}/deliberate      — Ask agent teammates to talk now
  POST /api/games/{game_id}/teams/{team}/pause           — Pause/resume agent deliberation
  POST /api/games/{game_id}/narration/ack                — Narration finished one message
  POST /api/games/{game_id}/narration/mode               — Turn narration pacing on/off

Every successful human action clears the team's pause flag and hands the
rest of the turn to the deliberation scheduler in the background.
"""
import asyncio
import logging
from typing import Any, Coroutine, Dict, Set

from fastapi import APIRouter, HTTPException

from models.game import (
    ChatRequest, CreateGameRequest, GameNotFoundError, GameRuleError, HintRequest,
    NarrationModeRequest, PauseRequest, ProposalRequest, SeatType, Team, VoteRequest,
)
from services.game_store import get_game_store
from agents.role_assigner import role_assigner
from agents.game_master import game_master
from agents.delivery_gate import delivery_gates
from agents.deliberation import trigger_after_human_action, trigger_autoplay

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])

# Strong references to running background tasks so they are not collected mid-flight.
_background_tasks: Set[asyncio.Task] = set()


def schedule(coro: Coroutine[Any, Any, None]) -> None:
    """Fire-and-forget: the response never waits on deliberation."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _game_or_404(game_id: str):
    try:
        return get_game_store().get_game(game_id)
    except GameNotFoundError:
        raise HTTPException(status_code=404, detail="Game not found")


def _after_human_action(game_id: str, team: Team) -> Dict[str, Any]:
    store = get_game_store()
    store.set_paused(game_id, team, False)
    schedule(trigger_after_human_action(game_id, team))
    return store.snapshot(game_id)


@router.post("/games", status_code=201)
async def create_game(body: CreateGameRequest):
    try:
        game = role_assigner.build_game(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    store = get_game_store()
    store.add_game(game)
    schedule(trigger_autoplay(game.id))
    return store.snapshot(game.id)


@router.get("/games/{game_id}")
async def get_game(game_id: str):
    _game_or_404(game_id)
    store = get_game_store()
    store.touch(game_id)
    return store.snapshot(game_id)


@router.post("/games/{game_id}/chat")
async def post_chat(game_id: str, body: ChatRequest):
    _game_or_404(game_id)
    try:
        get_game_store().post_chat(game_id, body.team, body.player_id, body.content)
    except GameRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _after_human_action(game_id, body.team)


@router.post("/games/{game_id}/hint")
async def submit_hint(game_id: str, body: HintRequest):
    _game_or_404(game_id)
    try:
        game_master.submit_hint(game_id, body.team, body.player_id, body.word, body.count, body.targets)
    except GameRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _after_human_action(game_id, body.team)


@router.post("/games/{game_id}/proposals")
async def create_proposal(game_id: str, body: ProposalRequest):
    _game_or_404(game_id)
    try:
        game_master.create_proposal(game_id, body.team, body.player_id, body.kind, body.word)
    except GameRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _after_human_action(game_id, body.team)


@router.post("/games/{game_id}/proposals/{proposal_id}/vote")
async def vote_on_proposal(game_id: str, proposal_id: str, body: VoteRequest):
    _game_or_404(game_id)
    try:
        game_master.vote_on_proposal(game_id, body.team, body.player_id, proposal_id, body.decision)
    except GameRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _after_human_action(game_id, body.team)


@router.post("/games/{game_id}/teams/{team}/deliberate")
async def nudge_team(game_id: str, team: Team):
    _game_or_404(game_id)
    _after_human_action(game_id, team)
    return {"status": "ok"}


@router.post("/games/{game_id}/teams/{team}/pause")
async def pause_team(game_id: str, team: Team, body: PauseRequest):
    game = _game_or_404(game_id)
    seat = game.seats.get(body.player_id)
    if seat is None or seat.team != team or seat.type != SeatType.HUMAN:
        raise HTTPException(status_code=400, detail="Only a human on this team can pause it")
    store = get_game_store()
    store.set_paused(game_id, team, body.paused)
    if not body.paused:
        schedule(trigger_after_human_action(game_id, team))
    return store.snapshot(game_id)


@router.post("/games/{game_id}/narration/ack")
async def narration_ack(game_id: str):
    _game_or_404(game_id)
    delivery_gates.ack(game_id)
    return {"status": "ok"}


@router.post("/games/{game_id}/narration/mode")
async def narration_mode(game_id: str, body: NarrationModeRequest):
    _game_or_404(game_id)
    delivery_gates.set_gating(game_id, body.enabled)
    return {"status": "ok", "enabled": body.enabled}
