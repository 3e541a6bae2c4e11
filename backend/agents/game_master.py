"""
Game Master — Pure deterministic Python, no LLM.

Responsibilities:
- Turn state machine (Hint → Guess → Banter → Hint, with the other team active)
- Hint validation
- Proposal creation, vote tallying and consensus
- Guess resolution and win condition checks
- Forfeiture

All game rules are implemented here. Every mutation is synchronous, so a
rule check and the write it guards always happen in the same step.
"""
import logging
import math
from typing import Optional, List

from models.game import (
    GameState, Team, Phase, SeatRole, SeatType, Seat, CardOwner, Proposal,
    ProposalKind, ProposalStatus, VoteDecision, MessageKind, other_team, owner_for,
    GameOverError, NotTeamMemberError, NotYourTurnError, WrongPhaseError,
    InvalidHintError, WordNotOnBoardError, WordAlreadyRevealedError,
    ProposalPendingError, ProposalNotFoundError, ProposalResolvedError,
    OwnProposalVoteError, GameRuleError, utcnow,
)
from services.game_store import GameStore, get_game_store

logger = logging.getLogger(__name__)


class GameMaster:
    """
    Deterministic rules engine.
    All methods read/write game state through the GameStore.
    """

    def __init__(self, store: Optional[GameStore] = None):
        self._store = store

    @property
    def store(self) -> GameStore:
        return self._store or get_game_store()

    # ── Team queries ──────────────────────────────────────────────────────────

    @staticmethod
    def operative_count(game: GameState, team: Team) -> int:
        return sum(1 for s in game.team_seats(team) if s.role == SeatRole.OPERATIVE)

    @staticmethod
    def required_votes(voter_count: int) -> int:
        """Accept votes needed from the voter_count operatives other than the proposer."""
        return max(0, math.ceil(voter_count / 2))

    @staticmethod
    def has_human_seat(game: GameState, team: Team) -> bool:
        return any(s.type == SeatType.HUMAN for s in game.team_seats(team))

    @staticmethod
    def agent_operatives(game: GameState, team: Team) -> List[Seat]:
        return [
            s for s in game.team_seats(team)
            if s.type == SeatType.AGENT and s.role == SeatRole.OPERATIVE
        ]

    @staticmethod
    def spymaster(game: GameState, team: Team) -> Optional[Seat]:
        for seat in game.team_seats(team):
            if seat.role == SeatRole.SPYMASTER:
                return seat
        return None

    # ── Guards ────────────────────────────────────────────────────────────────

    @staticmethod
    def _seat_on_team(game: GameState, team: Team, player_id: str) -> Seat:
        seat = game.seats.get(player_id)
        if seat is None or seat.team != team:
            raise NotTeamMemberError("Player is not on this team")
        return seat

    @staticmethod
    def _ensure_live(game: GameState):
        if game.winner is not None:
            raise GameOverError("Game is over")

    # ── Hint ──────────────────────────────────────────────────────────────────

    def submit_hint(
        self,
        game_id: str,
        team: Team,
        player_id: str,
        word: str,
        count: int,
        targets: Optional[List[str]] = None,
    ) -> GameState:
        """
        Accept a spymaster hint and open the guess phase.
        The team gets count + 1 guesses (one bonus guess).
        """
        game = self.store.get_game(game_id)
        self._ensure_live(game)
        seat = self._seat_on_team(game, team, player_id)
        if game.turn.active_team != team:
            raise NotYourTurnError("Not your turn")
        if game.turn.phase != Phase.HINT:
            raise WrongPhaseError("Not hint phase")
        if seat.role != SeatRole.SPYMASTER:
            raise InvalidHintError("Only the spymaster can give hints")
        tokens = (word or "").strip().split()
        if len(tokens) != 1:
            raise InvalidHintError("Hint must be a single word")
        if count < 1:
            raise InvalidHintError("Count must be a positive integer")
        hint_word = tokens[0].lower()
        if hint_word in game.board_words():
            raise InvalidHintError("Hint cannot be a word on the board")

        turn = game.turn
        turn.phase = Phase.GUESS
        turn.hint_word = hint_word
        turn.hint_count = count
        turn.hint_targets = [t.strip().lower() for t in targets if t.strip()] if targets else None
        turn.guesses_made = 0
        turn.max_guesses = count + 1
        self.store.add_system_message(game, team, f'Spymaster says: "{hint_word}" ({count})')
        logger.info(f"[{game_id}] {team.value} hint: {hint_word} ({count})")
        return game

    # ── Proposals ─────────────────────────────────────────────────────────────

    def create_proposal(
        self,
        game_id: str,
        team: Team,
        player_id: str,
        kind: ProposalKind,
        word: Optional[str] = None,
    ) -> GameState:
        """
        Open a team proposal (guess a word or end the turn).

        At most one proposal per team may be pending. A guess for the same word
        from a different operative is folded into an accept vote on the
        pending proposal. A solo operative's proposal is accepted on the spot.
        """
        game = self.store.get_game(game_id)
        self._ensure_live(game)
        seat = self._seat_on_team(game, team, player_id)
        if seat.role != SeatRole.OPERATIVE:
            raise GameRuleError("Only operatives can make proposals")
        if game.turn.active_team != team:
            raise NotYourTurnError("Not your turn")
        if game.turn.phase != Phase.GUESS:
            raise WrongPhaseError("Wait for the spymaster hint first")

        guess_word = (word or "").strip()
        pending = game.pending_proposal(team)
        if pending is not None:
            if (
                kind == ProposalKind.GUESS
                and pending.kind == ProposalKind.GUESS
                and guess_word.lower() == (pending.word or "").lower()
                and pending.created_by != player_id
            ):
                self.store.add_message(
                    game, team, player_id,
                    f'{seat.name} also wants to guess "{guess_word}"',
                    MessageKind.SYSTEM, pending.id,
                )
                return self.vote_on_proposal(game_id, team, player_id, pending.id, VoteDecision.ACCEPT)
            raise ProposalPendingError("There is already a pending proposal. Vote on it first")

        if kind == ProposalKind.GUESS:
            if not guess_word:
                raise WordNotOnBoardError("Guess must include a word")
            card = game.card_for(guess_word)
            if card is None:
                raise WordNotOnBoardError(f'"{guess_word}" is not on the board')
            if card.revealed:
                raise WordAlreadyRevealedError(f'"{guess_word}" has already been revealed')

        proposal = Proposal(
            team=team,
            kind=kind,
            word=guess_word if kind == ProposalKind.GUESS else None,
            created_by=player_id,
        )
        game.proposals[team].append(proposal)
        label = f'proposes guessing "{guess_word}"' if kind == ProposalKind.GUESS else "proposes ending the turn"
        self.store.add_message(game, team, player_id, f"{seat.name} {label}", MessageKind.PROPOSAL, proposal.id)
        logger.info(f"[{game_id}] {team.value} proposal by {seat.name}: {kind.value} {proposal.word or ''}".rstrip())

        voter_count = self.operative_count(game, team) - 1
        if self.required_votes(voter_count) == 0:
            self.store.add_system_message(game, team, "Solo operative — proposal auto-accepted.")
            self._accept(game, team, proposal)
        return game

    def vote_on_proposal(
        self,
        game_id: str,
        team: Team,
        player_id: str,
        proposal_id: str,
        decision: VoteDecision,
    ) -> GameState:
        """
        Record a vote and resolve the proposal once a threshold is crossed.
        Acceptance is checked before rejection; rejection needs a strict majority.
        """
        game = self.store.get_game(game_id)
        self._ensure_live(game)
        seat = self._seat_on_team(game, team, player_id)
        if game.turn.active_team != team:
            raise NotYourTurnError("Not your turn")
        if game.turn.phase != Phase.GUESS:
            raise WrongPhaseError("Voting is only open during the guess phase")
        if seat.role != SeatRole.OPERATIVE:
            raise GameRuleError("Only operatives can vote")
        proposal = game.find_proposal(team, proposal_id)
        if proposal is None:
            raise ProposalNotFoundError("Proposal not found")
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalResolvedError("Proposal already resolved")
        if proposal.created_by == player_id:
            raise OwnProposalVoteError("You cannot vote on your own proposal")

        proposal.votes[player_id] = decision
        self.store.add_message(
            game, team, player_id, f"{seat.name} voted {decision.value}", MessageKind.SYSTEM, proposal.id,
        )

        voter_count = self.operative_count(game, team) - 1
        threshold = self.required_votes(voter_count)
        accepts = sum(1 for v in proposal.votes.values() if v == VoteDecision.ACCEPT)
        rejects = sum(1 for v in proposal.votes.values() if v == VoteDecision.REJECT)
        logger.info(f"[{game_id}] {team.value} vote by {seat.name}: {decision.value} ({accepts}/{threshold} accepts)")

        if accepts >= threshold:
            self._accept(game, team, proposal)
        elif rejects > voter_count / 2:
            proposal.status = ProposalStatus.REJECTED
            proposal.resolved_at = utcnow()
            self.store.add_system_message(game, team, "Proposal rejected — keep discussing.")
        return game

    def _accept(self, game: GameState, team: Team, proposal: Proposal):
        proposal.status = ProposalStatus.ACCEPTED
        proposal.resolved_at = utcnow()
        if proposal.kind == ProposalKind.GUESS:
            self._resolve_guess(game, team, proposal.word or "")
        else:
            self.store.add_system_message(game, team, "Team decided to end their turn.")
            self._enter_banter(game)

    # ── Guess resolution ──────────────────────────────────────────────────────

    def _resolve_guess(self, game: GameState, team: Team, word: str):
        """
        Reveal the card and apply outcomes in strict priority order:
          1. assassin → other team wins
          2. guessing team has no words left → guessing team wins
          3. other team has no words left → other team wins
          4. wrong owner (enemy or neutral) → turn ends
          5. own word → count it; turn ends once the allowance is used up
        """
        card = game.card_for(word)
        if card is None:
            raise WordNotOnBoardError(f'"{word}" is not on the board')
        if card.revealed:
            raise WordAlreadyRevealedError(f'"{word}" was already revealed')

        card.revealed = True
        self.store.add_system_message(game, team, f'Revealed "{card.word}": {card.owner.value}')
        logger.info(f"[{game.id}] {team.value} revealed {card.word} ({card.owner.value})")

        enemy = other_team(team)
        if card.owner == CardOwner.ASSASSIN:
            self._finish_game(game, enemy, f"{team.value} hit the assassin!")
            return
        if game.remaining(owner_for(team)) == 0:
            self._finish_game(game, team, f"{team.value} found all their words")
            return
        if game.remaining(owner_for(enemy)) == 0:
            self._finish_game(game, enemy, f"All {enemy.value} words were revealed")
            return
        if card.owner != owner_for(team):
            self._enter_banter(game)
            return
        game.turn.guesses_made += 1
        if game.turn.guesses_made >= game.turn.max_guesses:
            self._enter_banter(game)

    # ── Turn transitions ──────────────────────────────────────────────────────

    def _enter_banter(self, game: GameState):
        # active_team is unchanged until end_banter flips it
        turn = game.turn
        # A proposal left open by a forfeit must not resolve on a later turn.
        leftover = game.pending_proposal(turn.active_team)
        if leftover is not None:
            leftover.status = ProposalStatus.REJECTED
            leftover.resolved_at = utcnow()
        turn.previous_team = turn.active_team
        turn.phase = Phase.BANTER
        turn.hint_word = None
        turn.hint_count = None
        turn.hint_targets = None
        turn.guesses_made = 0
        turn.max_guesses = 0
        logger.info(f"[{game.id}] {turn.active_team.value} turn over → banter")

    def _finish_game(self, game: GameState, winner: Team, reason: str):
        game.winner = winner
        game.win_reason = reason
        self.store.add_system_message(game, winner, f"Game over — {winner.value} wins! ({reason})")
        logger.info(f"[{game.id}] Game over: {winner.value} wins ({reason})")

    def end_banter(self, game_id: str) -> GameState:
        """Leave banter: the other team becomes active in hint phase."""
        game = self.store.get_game(game_id)
        if game.turn.phase != Phase.BANTER:
            raise WrongPhaseError("Not in banter phase")
        game.turn.active_team = other_team(game.turn.active_team)
        game.turn.phase = Phase.HINT
        self.store.add_system_message(game, game.turn.active_team, f"It's now {game.turn.active_team.value}'s turn.")
        logger.info(f"[{game_id}] Banter over → {game.turn.active_team.value} hint")
        return game

    def forfeit_turn(self, game_id: str, team: Team, reason: str) -> GameState:
        """
        End the team's turn without a winner. Same transition as an accepted
        end-turn proposal. No-op once the game is over or the turn has moved on.
        """
        game = self.store.get_game(game_id)
        if game.winner is not None:
            return game
        if game.turn.active_team != team or game.turn.phase == Phase.BANTER:
            logger.warning(f"[{game_id}] Forfeit for {team.value} skipped: turn already passed")
            return game
        self.store.add_system_message(game, team, reason)
        self._enter_banter(game)
        logger.error(f"[{game_id}] {team.value} forfeited: {reason}")
        return game


# Singleton
game_master = GameMaster()
