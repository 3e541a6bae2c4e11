import logging
import time
from typing import Optional, Dict, Any

from models.game import (
    GameState, GameNotFoundError, NotTeamMemberError, GameRuleError,
    Message, MessageKind, Team, SYSTEM_PLAYER_ID, SYSTEM_PLAYER_NAME,
)

logger = logging.getLogger(__name__)


class GameStore:
    """
    In-process registry of live games, keyed by game id.

    Every mutation is a plain synchronous method: nothing here awaits, so a
    read-modify-write on one game can never interleave with another task on
    the event loop. Games live for the life of the process.
    """

    def __init__(self):
        self._games: Dict[str, GameState] = {}
        self._last_poll: Dict[str, float] = {}

    # ── Registry ──────────────────────────────────────────────────────────────

    def add_game(self, game: GameState) -> GameState:
        self._games[game.id] = game
        logger.info(f"[{game.id}] Game registered ({len(game.seats)} seats, {game.turn.active_team.value} starts)")
        return game

    def get_game(self, game_id: str) -> GameState:
        game = self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")
        return game

    # ── Polling / abandonment ─────────────────────────────────────────────────

    def touch(self, game_id: str):
        """Record that a client just polled this game."""
        self._last_poll[game_id] = time.monotonic()

    def is_abandoned(self, game_id: str, timeout: float) -> bool:
        # A game nobody has ever polled (tests, headless runs) is never abandoned.
        last = self._last_poll.get(game_id)
        if last is None:
            return False
        return time.monotonic() - last > timeout

    def snapshot(self, game_id: str) -> Dict[str, Any]:
        return self.get_game(game_id).model_dump(mode="json")

    # ── Message log ───────────────────────────────────────────────────────────

    def add_message(
        self,
        game: GameState,
        team: Team,
        player_id: str,
        content: str,
        kind: MessageKind = MessageKind.CHAT,
        proposal_id: Optional[str] = None,
    ) -> Message:
        if player_id == SYSTEM_PLAYER_ID:
            name = SYSTEM_PLAYER_NAME
        else:
            seat = game.seats.get(player_id)
            name = seat.name if seat else player_id
        message = Message(
            team=team,
            player_id=player_id,
            player_name=name,
            kind=kind,
            content=content,
            proposal_id=proposal_id,
            phase=game.turn.phase,
        )
        game.messages.append(message)
        return message

    def add_system_message(self, game: GameState, team: Team, content: str) -> Message:
        return self.add_message(game, team, SYSTEM_PLAYER_ID, content, MessageKind.SYSTEM)

    def post_chat(self, game_id: str, team: Team, player_id: str, content: str) -> Message:
        game = self.get_game(game_id)
        seat = game.seats.get(player_id)
        if seat is None or seat.team != team:
            raise NotTeamMemberError("Player is not on this team")
        text = content.strip()
        if not text:
            raise GameRuleError("Message is empty")
        return self.add_message(game, team, player_id, text)

    # ── Per-team flags ────────────────────────────────────────────────────────

    def set_deliberating(self, game_id: str, team: Team, value: bool):
        self.get_game(game_id).deliberating[team] = value

    def set_paused(self, game_id: str, team: Team, value: bool):
        game = self.get_game(game_id)
        if game.paused[team] != value:
            logger.info(f"[{game_id}] {team.value} deliberation {'paused' if value else 'resumed'}")
        game.paused[team] = value

    def set_last_error(self, game_id: str, error: Optional[str]):
        self.get_game(game_id).last_error = error

    def mark_end_game_banter(self, game_id: str) -> bool:
        """One-shot flag. Returns True only for the first caller."""
        game = self.get_game(game_id)
        if game.end_game_banter_done:
            return False
        game.end_game_banter_done = True
        return True


_game_store: Optional[GameStore] = None


def get_game_store() -> GameStore:
    """Lazy singleton shared by the router and the scheduler."""
    global _game_store
    if _game_store is None:
        _game_store = GameStore()
    return _game_store
