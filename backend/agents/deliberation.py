"""
Deliberation Scheduler — drives every agent seat through the turn cycle.

Responsibilities:
- Per-team advisory locks so two background runs never drive the same team
- Conversation rounds (shuffled speaking order, same-round vote passes)
- Spymaster hint retries with rejected words fed back to the model
- Stale-round and failure-count detection, resolved by forfeiting the turn
- Banter between turns, reveal reactions and end-game banter
- The autoplay loop that runs after game creation and every human action

Rules live in the GameMaster; this module only decides who speaks when.
Every read after an await re-fetches the game, since a human action may have
changed it while the model was thinking.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from config import Settings, settings
from models.game import (
    GameState, Phase, ProposalKind, ProposalStatus, Seat, SeatRole,
    SeatType, Team, GameRuleError, ProposalNotFoundError, ProposalPendingError,
    ProposalResolvedError, WordAlreadyRevealedError, WordNotOnBoardError, other_team,
)
from services.game_store import GameStore, get_game_store
from agents.agent_port import (
    ActionType, AgentAction, AgentPort, AgentPortError, AgentSituation, ChatLine, SituationMode,
)
from agents.delivery_gate import DeliveryGateManager, delivery_gates
from agents.game_master import GameMaster, game_master
from agents.seat_agent import seat_agent

logger = logging.getLogger(__name__)

# Proposal errors that mean the team played a bad move, not that something broke.
_RECOVERABLE_PROPOSAL_ERRORS = (WordNotOnBoardError, WordAlreadyRevealedError, ProposalPendingError)


@dataclass
class TeamSchedulingState:
    """Scheduler bookkeeping for one (game, team). Never stored on the game."""
    locked: bool = False
    failure_count: int = 0
    proposed_words: Set[str] = field(default_factory=set)

    def reset(self):
        self.failure_count = 0
        self.proposed_words.clear()


class Deliberator:

    def __init__(
        self,
        store: Optional[GameStore] = None,
        master: Optional[GameMaster] = None,
        port: Optional[AgentPort] = None,
        gates: Optional[DeliveryGateManager] = None,
        config: Optional[Settings] = None,
    ):
        self._store = store
        self.master = master or game_master
        self.port = port or seat_agent
        self.gates = gates or delivery_gates
        self.config = config or settings
        self._teams: Dict[Tuple[str, Team], TeamSchedulingState] = {}
        # Games whose banter is being resolved right now.
        # asyncio is single-threaded so a plain set is safe without a Lock.
        self._banter_active: Set[str] = set()

    @property
    def store(self) -> GameStore:
        return self._store or get_game_store()

    # ── Team state / locks ────────────────────────────────────────────────────

    def team_state(self, game_id: str, team: Team) -> TeamSchedulingState:
        key = (game_id, team)
        state = self._teams.get(key)
        if state is None:
            state = TeamSchedulingState()
            self._teams[key] = state
        return state

    def _acquire(self, game_id: str, team: Team) -> bool:
        state = self.team_state(game_id, team)
        if state.locked:
            logger.warning("[%s] %s lock already held", game_id, team.value)
            return False
        state.locked = True
        logger.info("[%s] %s lock acquired", game_id, team.value)
        return True

    def _release(self, game_id: str, team: Team):
        self.team_state(game_id, team).locked = False
        logger.info("[%s] %s lock released", game_id, team.value)

    def reset_turn_counters(self, game_id: str, team: Team):
        self.team_state(game_id, team).reset()

    def _in_play(self, game_id: str, team: Team) -> bool:
        """The team still owns a live, non-banter turn."""
        game = self.store.get_game(game_id)
        return game.winner is None and game.turn.active_team == team and game.turn.phase != Phase.BANTER

    # ── Situation ─────────────────────────────────────────────────────────────

    def build_situation(
        self,
        game: GameState,
        seat: Seat,
        team: Team,
        mode: SituationMode = SituationMode.TURN,
        rejected_hints: Sequence[str] = (),
    ) -> AgentSituation:
        """
        Snapshot what one seat may know right now.

        Team-only history plus cross-team banter lines (labelled with the
        other team), and warning lines when the team needs a nudge.
        """
        if mode == SituationMode.END_GAME:
            history = [
                ChatLine(name=m.player_name, content=m.content)
                for m in game.messages[-self.config.end_game_history_limit:]
            ]
            return AgentSituation(
                game=game.model_copy(deep=True), seat=seat, team=team, mode=mode, history=history,
            )

        history: List[ChatLine] = []
        for m in game.messages:
            if m.team == team:
                history.append(ChatLine(name=m.player_name, content=m.content))
            elif m.phase == Phase.BANTER:
                history.append(ChatLine(name=f"[{m.team.value}] {m.player_name}", content=m.content))

        pending = game.pending_proposal(team)
        guessing_operative = game.turn.phase == Phase.GUESS and seat.role == SeatRole.OPERATIVE
        if mode == SituationMode.TURN and guessing_operative:
            if pending is not None and pending.created_by != seat.id:
                # Lines about the proposal itself (its announcement, votes, folds) do not count.
                chatter = sum(
                    1 for m in game.messages
                    if m.team == team and m.created_at > pending.created_at and m.proposal_id != pending.id
                )
                if chatter >= 2:
                    history.append(ChatLine(name="System", content="STOP TALKING. Vote on the pending proposal NOW."))
                elif chatter >= 1:
                    history.append(ChatLine(name="System", content="There's a proposal waiting for your vote."))

            failures = self.team_state(game.id, team).failure_count
            if failures >= 3:
                available = ", ".join(c.word for c in game.cards if not c.revealed)
                history.append(ChatLine(
                    name="System",
                    content=(
                        f"CRITICAL: {failures} invalid moves in a row. Valid words: {available}. "
                        "Propose ending the turn if unsure."
                    ),
                ))

        return AgentSituation(
            game=game.model_copy(deep=True),
            seat=seat,
            team=team,
            mode=mode,
            pending_proposals=[pending] if pending is not None else [],
            history=history,
            rejected_hints=list(rejected_hints),
        )

    # ── Single seat ───────────────────────────────────────────────────────────

    async def run_one_seat(
        self,
        game_id: str,
        team: Team,
        seat_id: str,
        mode: SituationMode = SituationMode.TURN,
    ) -> bool:
        """
        Ask one agent seat for its move and apply it.
        Returns True when the seat made a valid contribution.
        """
        game = self.store.get_game(game_id)
        if game.winner is not None:
            return False
        banter = game.turn.phase == Phase.BANTER
        if not banter and game.turn.active_team != team:
            return False
        seat = game.seats.get(seat_id)
        if seat is None or seat.type != SeatType.AGENT:
            logger.warning("[%s] Seat %s is not an agent seat", game_id, seat_id)
            return False
        if seat.role == SeatRole.SPYMASTER and game.turn.phase in (Phase.GUESS, Phase.BANTER):
            return False

        hinting = seat.role == SeatRole.SPYMASTER and game.turn.phase == Phase.HINT
        attempts = self.config.max_hint_attempts if hinting else 1
        rejected: List[str] = []

        for attempt in range(attempts):
            game = self.store.get_game(game_id)
            situation = self.build_situation(game, seat, team, mode, rejected)
            phase_before = game.turn.phase
            try:
                response = await self.port.respond(situation)
            except AgentPortError as exc:
                logger.error("[%s] Agent call failed for %s (attempt %d): %s", game_id, seat.name, attempt + 1, exc)
                self.store.set_last_error(game_id, f"Agent error ({seat.name}): {exc}")
                return False

            game = self.store.get_game(game_id)
            if game.winner is not None:
                return False
            if mode == SituationMode.REVEAL_REACTION:
                if response.has_message:
                    self.store.post_chat(game_id, team, seat.id, response.message)
                return True
            if game.turn.phase != phase_before or (not banter and game.turn.active_team != team):
                logger.info("[%s] %s answered too late, turn moved on", game_id, seat.name)
                return False

            action = response.action
            if hinting:
                if action.type != ActionType.HINT:
                    logger.warning("[%s] %s gave %s instead of a hint", game_id, seat.name, action.type.value)
                    continue
                if action.word.lower() in game.board_words():
                    logger.warning("[%s] Hint rejected, %r is on the board", game_id, action.word)
                    rejected.append(action.word)
                    continue
                try:
                    self.master.submit_hint(game_id, team, seat.id, action.word, action.count, action.targets)
                except GameRuleError as exc:
                    logger.warning("[%s] Hint %r rejected: %s", game_id, action.word, exc)
                    rejected.append(action.word)
                    continue
                return True

            state = self.team_state(game_id, team)
            must_vote = None
            if game.turn.phase == Phase.GUESS and seat.role == SeatRole.OPERATIVE:
                pending = game.pending_proposal(team)
                if pending is not None and pending.created_by != seat.id:
                    must_vote = pending
            if must_vote is not None and (action.type != ActionType.VOTE or action.proposal_id != must_vote.id):
                logger.warning(
                    "[%s] %s skipped the mandatory vote on %s (%s)", game_id, seat.name, must_vote.id, action.type.value,
                )
                state.failure_count += 1
                return False

            if response.has_message:
                self.store.post_chat(game_id, team, seat.id, response.message)
            return self._apply_action(game_id, team, seat, action, state)

        logger.error("[%s] %s failed to produce a valid hint in %d attempts", game_id, seat.name, attempts)
        return False

    def _apply_action(
        self, game_id: str, team: Team, seat: Seat, action: AgentAction, state: TeamSchedulingState,
    ) -> bool:
        if action.type == ActionType.NONE:
            return True
        if self.store.get_game(game_id).turn.phase == Phase.BANTER:
            logger.info("[%s] Ignoring %s from %s during banter", game_id, action.type.value, seat.name)
            return True

        try:
            if action.type == ActionType.PROPOSE_GUESS:
                word = action.word or ""
                try:
                    self.master.create_proposal(game_id, team, seat.id, ProposalKind.GUESS, word)
                except _RECOVERABLE_PROPOSAL_ERRORS as exc:
                    logger.warning("[%s] %s proposal %r failed: %s", game_id, seat.name, word, exc)
                    self.store.post_chat(game_id, team, seat.id, f'Cannot guess "{word}": {exc}')
                    state.failure_count += 1
                    return False
                key = word.strip().lower()
                if key not in state.proposed_words:
                    state.failure_count = 0
                state.proposed_words.add(key)
                return True

            if action.type == ActionType.PROPOSE_END_TURN:
                try:
                    self.master.create_proposal(game_id, team, seat.id, ProposalKind.END_TURN)
                except _RECOVERABLE_PROPOSAL_ERRORS as exc:
                    logger.warning("[%s] %s end-turn proposal failed: %s", game_id, seat.name, exc)
                    state.failure_count += 1
                    return False
                return True

            if action.type == ActionType.VOTE:
                try:
                    self.master.vote_on_proposal(game_id, team, seat.id, action.proposal_id, action.decision)
                except (ProposalResolvedError, ProposalNotFoundError) as exc:
                    logger.warning("[%s] Vote by %s skipped: %s", game_id, seat.name, exc)
                return True

            logger.warning("[%s] %s sent %s out of turn", game_id, seat.name, action.type.value)
            return False
        except GameRuleError as exc:
            logger.warning("[%s] %s move rejected: %s", game_id, seat.name, exc)
            return False

    # ── Rounds ────────────────────────────────────────────────────────────────

    async def run_conversation_round(self, game_id: str, team: Team) -> bool:
        """
        One pass over the team's agent seats in a fresh random order.
        Returns False only when the round ended in a forfeiture.
        """
        # Spymasters only ever act through run_spymaster_hint.
        seats = self.master.agent_operatives(self.store.get_game(game_id), team)
        if not seats:
            logger.warning("[%s] No agent seats to speak for %s", game_id, team.value)
            return True

        speakers = random.sample(seats, len(seats))
        spoke: Set[str] = set()
        state = self.team_state(game_id, team)
        logger.info("[%s] %s conversation round (%d speakers)", game_id, team.value, len(speakers))

        for seat in speakers:
            current = self.store.get_game(game_id)
            if current.winner is not None or current.turn.active_team != team:
                return True
            if seat.id in spoke:
                continue

            await self.run_one_seat(game_id, team, seat.id)
            spoke.add(seat.id)
            await self.gates.wait(game_id)

            pending = self.store.get_game(game_id).pending_proposal(team)
            if pending is not None:
                voters = [
                    s for s in speakers
                    if s.id != pending.created_by and s.id not in pending.votes and s.id not in spoke
                ]
                for voter in voters:
                    check = self.store.get_game(game_id)
                    proposal = check.find_proposal(team, pending.id)
                    if check.winner is not None or proposal is None or proposal.status != ProposalStatus.PENDING:
                        break
                    await self.run_one_seat(game_id, team, voter.id)
                    spoke.add(voter.id)
                    await self.gates.wait(game_id)

            if state.failure_count >= self.config.max_team_failures:
                self.master.forfeit_turn(game_id, team, f"Team {team.value} kept making invalid moves. Turn forfeited.")
                return False
        return True

    async def run_reveal_reaction(self, game_id: str, team: Team):
        game = self.store.get_game(game_id)
        if game.winner is not None:
            return
        operatives = self.master.agent_operatives(game, team)
        if not operatives:
            return
        reactor = random.choice(operatives)
        self.store.set_deliberating(game_id, team, True)
        try:
            await self.run_one_seat(game_id, team, reactor.id, SituationMode.REVEAL_REACTION)
            await self.gates.wait(game_id)
        finally:
            self.store.set_deliberating(game_id, team, False)

    async def run_spymaster_hint(self, game_id: str, team: Team) -> bool:
        """False when the spymaster step failed and the turn was forfeited."""
        game = self.store.get_game(game_id)
        if game.winner is not None or game.turn.active_team != team or game.turn.phase != Phase.HINT:
            return True
        spymaster = self.master.spymaster(game, team)
        if spymaster is None or spymaster.type != SeatType.AGENT:
            return True

        if await self.run_one_seat(game_id, team, spymaster.id):
            return True
        game = self.store.get_game(game_id)
        if game.winner is None and game.turn.active_team == team and game.turn.phase == Phase.HINT:
            self.master.forfeit_turn(game_id, team, f"{spymaster.name} could not provide a valid hint. Turn forfeited.")
        return False

    async def run_teammate_round(self, game_id: str, team: Team) -> bool:
        """One locked conversation round. False only on lock contention."""
        game = self.store.get_game(game_id)
        if game.paused[team] or game.turn.phase == Phase.BANTER:
            logger.info("[%s] Teammate round for %s skipped (%s)", game_id, team.value,
                        "paused" if game.paused[team] else "banter")
            return True
        if not self._acquire(game_id, team):
            return False
        try:
            self.store.set_deliberating(game_id, team, True)
            await self.run_conversation_round(game_id, team)
        finally:
            self.store.set_deliberating(game_id, team, False)
            self._release(game_id, team)
        return True

    async def auto_spymaster_hint(self, game_id: str, team: Team):
        """
        Agent spymaster on a team that also has a human: give the hint, then
        keep the agent operatives talking until the turn ends.
        """
        game = self.store.get_game(game_id)
        if game.winner is not None or game.turn.active_team != team or game.turn.phase != Phase.HINT:
            return
        self.reset_turn_counters(game_id, team)
        spymaster = self.master.spymaster(game, team)
        if spymaster is None or spymaster.type != SeatType.AGENT:
            return

        if not self._acquire(game_id, team):
            return
        try:
            self.store.set_deliberating(game_id, team, True)
            await self.gates.wait(game_id)
            if not await self.run_spymaster_hint(game_id, team):
                return
        finally:
            self.store.set_deliberating(game_id, team, False)
            self._release(game_id, team)

        rounds = 0
        stale = 0
        while rounds < self.config.max_conversation_rounds:
            current = self.store.get_game(game_id)
            if (
                current.winner is not None
                or current.turn.active_team != team
                or current.turn.phase != Phase.GUESS
                or current.paused[team]
            ):
                return
            guesses_before = current.turn.guesses_made
            if not await self.run_teammate_round(game_id, team):
                return
            after = self.store.get_game(game_id)
            progressed = (
                after.turn.guesses_made > guesses_before
                or after.turn.phase != Phase.GUESS
                or after.turn.active_team != team
            )
            stale = 0 if progressed else stale + 1
            if stale >= self.config.max_assisted_stale_rounds:
                self.master.forfeit_turn(game_id, team, f"Team {team.value} couldn't make progress. Turn forfeited.")
                return
            rounds += 1

        if self._in_play(game_id, team):
            self.master.forfeit_turn(game_id, team, f"Team {team.value} took too long deliberating. Turn forfeited.")

    async def run_full_agent_turn(self, game_id: str, team: Team, max_rounds: Optional[int] = None) -> bool:
        """
        Play a whole turn for an all-agent team: hint, then conversation rounds
        until the turn ends, a winner appears or the team is forfeited.
        Returns False only when the team lock was already held.
        """
        max_rounds = max_rounds or self.config.max_conversation_rounds
        await self.resolve_banter(game_id)

        if not self._acquire(game_id, team):
            return False
        try:
            self.store.set_deliberating(game_id, team, True)
            self.reset_turn_counters(game_id, team)
            if not await self.run_spymaster_hint(game_id, team):
                return True

            rounds = 0
            stale = 0
            while rounds < max_rounds and self._in_play(game_id, team):
                before = self.store.get_game(game_id)
                guesses_before = before.turn.guesses_made
                phase_before = before.turn.phase

                if not await self.run_conversation_round(game_id, team):
                    return True
                if not self._in_play(game_id, team):
                    return True

                after = self.store.get_game(game_id)
                if after.turn.guesses_made > guesses_before:
                    await self.run_reveal_reaction(game_id, team)

                progressed = after.turn.guesses_made > guesses_before or after.turn.phase != phase_before
                stale = 0 if progressed else stale + 1
                logger.info("[%s] %s round %d done (stale=%d, guesses=%d)",
                            game_id, team.value, rounds + 1, stale, after.turn.guesses_made)
                if stale >= self.config.max_stale_rounds:
                    self.master.forfeit_turn(game_id, team, f"Team {team.value} couldn't make progress. Turn forfeited.")
                    return True
                rounds += 1

            if self._in_play(game_id, team):
                self.master.forfeit_turn(game_id, team, f"Team {team.value} took too long deliberating. Turn forfeited.")
            return True
        finally:
            self.store.set_deliberating(game_id, team, False)
            self._release(game_id, team)

    # ── Banter ────────────────────────────────────────────────────────────────

    async def resolve_banter(self, game_id: str):
        """Run the banter round if the game is in banter and nobody else is on it."""
        game = self.store.get_game(game_id)
        if game.winner is not None or game.turn.phase != Phase.BANTER:
            return
        if game_id in self._banter_active:
            return
        self._banter_active.add(game_id)
        try:
            await self.run_banter_round(game_id)
        finally:
            self._banter_active.discard(game_id)

    async def run_banter_round(self, game_id: str):
        """Outgoing, incoming, outgoing: one agent operative each, then flip the turn."""
        game = self.store.get_game(game_id)
        if game.winner is not None or game.turn.phase != Phase.BANTER:
            return
        outgoing = game.turn.previous_team or game.turn.active_team
        incoming = other_team(outgoing)

        for team in (outgoing, incoming, outgoing):
            check = self.store.get_game(game_id)
            if check.winner is not None or check.turn.phase != Phase.BANTER:
                break
            operatives = self.master.agent_operatives(check, team)
            if not operatives:
                continue
            speaker = random.choice(operatives)
            self.store.set_deliberating(game_id, team, True)
            try:
                await self.run_one_seat(game_id, team, speaker.id)
                await self.gates.wait(game_id)
            finally:
                self.store.set_deliberating(game_id, team, False)

        final = self.store.get_game(game_id)
        if final.winner is None and final.turn.phase == Phase.BANTER:
            self.master.end_banter(game_id)

    async def run_end_game_banter(self, game_id: str):
        """Winner, loser, winner. Runs once per game; failures are only logged."""
        game = self.store.get_game(game_id)
        if game.winner is None:
            return
        if not self.store.mark_end_game_banter(game_id):
            return
        winner = game.winner
        loser = other_team(winner)

        for team in (winner, loser, winner):
            operatives = self.master.agent_operatives(self.store.get_game(game_id), team)
            if not operatives:
                continue
            speaker = random.choice(operatives)
            self.store.set_deliberating(game_id, team, True)
            try:
                situation = self.build_situation(self.store.get_game(game_id), speaker, team, SituationMode.END_GAME)
                response = await self.port.respond(situation)
                if response.has_message:
                    self.store.post_chat(game_id, team, speaker.id, response.message)
                await self.gates.wait(game_id)
            except Exception:
                logger.exception("[%s] End-game banter failed for %s", game_id, speaker.name)
            finally:
                self.store.set_deliberating(game_id, team, False)
        logger.info("[%s] End-game banter done", game_id)

    # ── Autoplay ──────────────────────────────────────────────────────────────

    async def autoplay(self, game_id: str):
        """
        Keep agent-only turns flowing until a human is needed, the game ends
        (after its end-game banter), the game is abandoned or another task
        already holds the active team.
        """
        for _ in range(self.config.max_autoplay_turns):
            game = self.store.get_game(game_id)
            if game.winner is not None:
                await self.run_end_game_banter(game_id)
                return
            if self.store.is_abandoned(game_id, self.config.abandon_after_seconds):
                logger.info("[%s] Game abandoned, autoplay stopped", game_id)
                return

            await self.resolve_banter(game_id)
            game = self.store.get_game(game_id)
            if game.winner is not None:
                continue
            if game.turn.phase == Phase.BANTER:
                return
            team = game.turn.active_team

            if self.master.has_human_seat(game, team):
                if game.paused[team] or game.turn.phase != Phase.HINT:
                    return
                spymaster = self.master.spymaster(game, team)
                if spymaster is None or spymaster.type != SeatType.AGENT:
                    return
                await self.auto_spymaster_hint(game_id, team)
                after = self.store.get_game(game_id)
                if after.winner is None and after.turn.active_team == team and after.turn.phase != Phase.BANTER:
                    return
                continue

            if not await self.run_full_agent_turn(game_id, team):
                return
        logger.warning("[%s] Autoplay stopped after %d turns", game_id, self.config.max_autoplay_turns)

    async def after_human_action(self, game_id: str, team: Team):
        await self.run_teammate_round(game_id, team)
        await self.autoplay(game_id)


# Singleton
deliberator = Deliberator()


# ── Fire-and-forget helpers (called via asyncio.create_task) ──────────────────

async def trigger_autoplay(game_id: str) -> None:
    """Background task: play agent turns after game creation."""
    try:
        await deliberator.autoplay(game_id)
    except Exception:
        logger.exception("[%s] Autoplay failed", game_id)


async def trigger_after_human_action(game_id: str, team: Team) -> None:
    """Background task: let teammates respond, then resume autoplay."""
    try:
        await deliberator.after_human_action(game_id, team)
    except Exception:
        logger.exception("[%s] Deliberation after human action failed", game_id)
