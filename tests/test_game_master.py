"""Turn state machine, proposal protocol and guess resolution."""
import pytest

from models.game import (
    CardOwner, GameOverError, InvalidHintError, MessageKind, NotTeamMemberError,
    NotYourTurnError, OwnProposalVoteError, Phase, ProposalKind, ProposalPendingError,
    ProposalResolvedError, ProposalStatus, GameRuleError, SeatRole, Team, VoteDecision,
    WordAlreadyRevealedError, WordNotOnBoardError, WrongPhaseError,
)
from conftest import ASSASSIN_WORD, BLUE_WORDS, NEUTRAL_WORDS, RED_WORDS, make_game


def _setup(store, **kwargs):
    game = make_game(**kwargs)
    store.add_game(game)
    return game


def _reveal_all_but(game, owner: CardOwner, keep: int):
    cards = [c for c in game.cards if c.owner == owner]
    for card in cards[keep:]:
        card.revealed = True


class TestHint:

    def test_board_word_rejected_case_insensitive(self, store, master):
        game = _setup(store)
        before = game.model_dump()
        with pytest.raises(InvalidHintError):
            master.submit_hint(game.id, Team.RED, "red-spy", "ApPlE", 2)
        assert game.model_dump() == before

    def test_board_word_rejected_even_when_revealed(self, store, master):
        game = _setup(store)
        game.card_for("queen").revealed = True
        with pytest.raises(InvalidHintError):
            master.submit_hint(game.id, Team.RED, "red-spy", "queen", 1)
        assert game.turn.phase == Phase.HINT

    @pytest.mark.parametrize("word,count", [("two words", 1), ("", 1), ("fruit", 0)])
    def test_malformed_hint_rejected(self, store, master, word, count):
        game = _setup(store)
        with pytest.raises(InvalidHintError):
            master.submit_hint(game.id, Team.RED, "red-spy", word, count)
        assert game.turn.phase == Phase.HINT
        assert game.messages == []

    def test_only_active_spymaster_may_hint(self, store, master):
        game = _setup(store)
        with pytest.raises(InvalidHintError):
            master.submit_hint(game.id, Team.RED, "red-op-1", "fruit", 1)
        with pytest.raises(NotYourTurnError):
            master.submit_hint(game.id, Team.BLUE, "blue-spy", "fruit", 1)
        with pytest.raises(NotTeamMemberError):
            master.submit_hint(game.id, Team.RED, "blue-spy", "fruit", 1)

    def test_valid_hint_opens_guess_phase(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "Fruit", 2, ["apple", "garden"])
        assert game.turn.phase == Phase.GUESS
        assert game.turn.hint_word == "fruit"
        assert game.turn.hint_count == 2
        assert game.turn.hint_targets == ["apple", "garden"]
        assert game.turn.guesses_made == 0
        assert game.turn.max_guesses == 3
        assert game.messages[-1].content == 'Spymaster says: "fruit" (2)'
        assert game.messages[-1].kind == MessageKind.SYSTEM

    def test_second_hint_in_guess_phase_rejected(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        with pytest.raises(WrongPhaseError):
            master.submit_hint(game.id, Team.RED, "red-spy", "tree", 1)


class TestGuessCount:

    def test_count_plus_one_correct_guesses_then_turn_ends(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        assert game.turn.phase == Phase.GUESS
        assert game.turn.guesses_made == 1
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "bridge")
        assert game.turn.phase == Phase.BANTER
        assert game.turn.active_team == Team.RED
        assert game.turn.previous_team == Team.RED

    @pytest.mark.parametrize("word", [NEUTRAL_WORDS[0], BLUE_WORDS[0]])
    def test_wrong_guess_ends_turn_immediately(self, store, master, word):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 3)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, word)
        assert game.turn.phase == Phase.BANTER
        assert game.winner is None
        assert game.turn.guesses_made == 0


class TestProposals:

    def test_requires_guess_phase(self, store, master):
        game = _setup(store)
        with pytest.raises(WrongPhaseError):
            master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")

    def test_spymaster_cannot_propose(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        with pytest.raises(GameRuleError):
            master.create_proposal(game.id, Team.RED, "red-spy", ProposalKind.GUESS, "apple")

    def test_word_must_be_on_board_and_hidden(self, store, master):
        game = _setup(store, red_operatives=3)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        with pytest.raises(WordNotOnBoardError):
            master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "banana")
        game.card_for("apple").revealed = True
        with pytest.raises(WordAlreadyRevealedError):
            master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "APPLE")
        assert game.proposals[Team.RED] == []

    def test_single_pending_proposal_per_team(self, store, master):
        game = _setup(store, red_operatives=3)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        with pytest.raises(ProposalPendingError):
            master.create_proposal(game.id, Team.RED, "red-op-2", ProposalKind.GUESS, "bridge")
        with pytest.raises(ProposalPendingError):
            master.create_proposal(game.id, Team.RED, "red-op-2", ProposalKind.END_TURN)
        with pytest.raises(ProposalPendingError):
            master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pending = [p for p in game.proposals[Team.RED] if p.status == ProposalStatus.PENDING]
        assert len(pending) == 1

    def test_same_word_from_other_seat_folds_into_accept_vote(self, store, master):
        game = _setup(store, red_operatives=4)  # 3 voters, threshold 2
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        master.create_proposal(game.id, Team.RED, "red-op-2", ProposalKind.GUESS, " Apple ")
        assert len(game.proposals[Team.RED]) == 1
        proposal = game.proposals[Team.RED][0]
        assert proposal.votes == {"red-op-2": VoteDecision.ACCEPT}
        assert proposal.status == ProposalStatus.PENDING
        assert any("also wants to guess" in m.content for m in game.messages)

    def test_solo_operative_auto_accepts(self, store, master):
        game = _setup(store, red_operatives=1)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.END_TURN)
        proposal = game.proposals[Team.RED][0]
        assert proposal.status == ProposalStatus.ACCEPTED
        assert proposal.votes == {}
        assert game.turn.phase == Phase.BANTER


class TestVoting:

    def test_threshold_is_half_of_other_operatives_rounded_up(self, master):
        assert master.required_votes(0) == 0
        assert master.required_votes(1) == 1
        assert master.required_votes(2) == 1
        assert master.required_votes(3) == 2
        assert master.required_votes(4) == 2

    def test_accept_threshold_resolves_guess(self, store, master):
        game = _setup(store, red_operatives=4)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert game.proposals[Team.RED][0].status == ProposalStatus.PENDING
        master.vote_on_proposal(game.id, Team.RED, "red-op-3", pid, VoteDecision.ACCEPT)
        assert game.proposals[Team.RED][0].status == ProposalStatus.ACCEPTED
        assert game.card_for("apple").revealed

    def test_strict_majority_needed_to_reject(self, store, master):
        game = _setup(store, red_operatives=5)  # 4 voters: threshold 2, reject needs 3
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.REJECT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-3", pid, VoteDecision.REJECT)
        assert game.proposals[Team.RED][0].status == ProposalStatus.PENDING
        master.vote_on_proposal(game.id, Team.RED, "red-op-4", pid, VoteDecision.REJECT)
        assert game.proposals[Team.RED][0].status == ProposalStatus.REJECTED
        assert not game.card_for("apple").revealed
        assert game.messages[-1].content == "Proposal rejected — keep discussing."

    def test_accept_checked_before_reject(self, store, master):
        game = _setup(store, red_operatives=5)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.REJECT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-3", pid, VoteDecision.REJECT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-4", pid, VoteDecision.ACCEPT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-5", pid, VoteDecision.ACCEPT)
        assert game.proposals[Team.RED][0].status == ProposalStatus.ACCEPTED

    def test_last_vote_from_a_seat_wins(self, store, master):
        game = _setup(store, red_operatives=4)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.REJECT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert game.proposals[Team.RED][0].votes == {"red-op-2": VoteDecision.ACCEPT}

    def test_cannot_vote_on_own_or_resolved_proposal(self, store, master):
        game = _setup(store, red_operatives=2)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 2)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        pid = game.proposals[Team.RED][0].id
        with pytest.raises(OwnProposalVoteError):
            master.vote_on_proposal(game.id, Team.RED, "red-op-1", pid, VoteDecision.ACCEPT)
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        with pytest.raises(ProposalResolvedError):
            master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.REJECT)

    def test_accepted_end_turn_enters_banter(self, store, master):
        game = _setup(store, red_operatives=2)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 2)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.END_TURN)
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert game.turn.phase == Phase.BANTER
        assert game.turn.hint_word is None
        assert game.turn.active_team == Team.RED


class TestGuessResolution:

    def test_simple_win_by_majority(self, store, master):
        game = _setup(store, red_operatives=3)
        _reveal_all_but(game, CardOwner.RED, keep=1)
        last = RED_WORDS[0]
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, last)
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        card = game.card_for(last)
        assert card.revealed and card.owner == CardOwner.RED
        assert game.winner == Team.RED
        assert "found all their words" in game.win_reason

    def test_assassin_loses_even_with_one_word_left(self, store, master):
        game = _setup(store, red_operatives=3)
        _reveal_all_but(game, CardOwner.RED, keep=1)
        master.submit_hint(game.id, Team.RED, "red-spy", "boom", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, ASSASSIN_WORD)
        pid = game.proposals[Team.RED][0].id
        master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert game.winner == Team.BLUE
        assert "hit the assassin" in game.win_reason

    def test_revealing_enemy_last_word_awards_enemy(self, store, master):
        game = _setup(store)
        _reveal_all_but(game, CardOwner.BLUE, keep=1)
        master.submit_hint(game.id, Team.RED, "red-spy", "sea", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, BLUE_WORDS[0])
        assert game.winner == Team.BLUE
        assert game.win_reason == "All blue words were revealed"

    def test_reveal_touches_exactly_one_card(self, store, master):
        # Ownership is disjoint: revealing one card can never finish another owner's set.
        game = _setup(store)
        _reveal_all_but(game, CardOwner.RED, keep=1)
        _reveal_all_but(game, CardOwner.BLUE, keep=1)
        before = {c.word: c.revealed for c in game.cards}
        master.submit_hint(game.id, Team.RED, "red-spy", "royal", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, NEUTRAL_WORDS[0])
        after = {c.word: c.revealed for c in game.cards}
        flipped = [w for w in after if after[w] != before[w]]
        assert flipped == [NEUTRAL_WORDS[0]]
        assert game.remaining(CardOwner.RED) == 1
        assert game.remaining(CardOwner.BLUE) == 1
        assert game.winner is None
        assert game.turn.phase == Phase.BANTER

    def test_no_actions_after_game_over(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "boom", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, ASSASSIN_WORD)
        assert game.winner == Team.BLUE
        with pytest.raises(GameOverError):
            master.submit_hint(game.id, Team.BLUE, "blue-spy", "sea", 1)
        with pytest.raises(GameOverError):
            master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.END_TURN)


class TestTurnTransitions:

    def test_end_banter_flips_active_team(self, store, master):
        game = _setup(store)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.END_TURN)
        master.end_banter(game.id)
        assert game.turn.active_team == Team.BLUE
        assert game.turn.phase == Phase.HINT
        assert game.messages[-1].content == "It's now blue's turn."

    def test_end_banter_outside_banter_rejected(self, store, master):
        game = _setup(store)
        with pytest.raises(WrongPhaseError):
            master.end_banter(game.id)

    def test_forfeit_enters_banter_without_winner(self, store, master):
        game = _setup(store)
        master.forfeit_turn(game.id, Team.RED, "Red gave up. Turn forfeited.")
        assert game.turn.phase == Phase.BANTER
        assert game.turn.active_team == Team.RED
        assert game.winner is None
        assert game.messages[-1].content == "Red gave up. Turn forfeited."

    def test_forfeit_closes_pending_proposal(self, store, master):
        game = _setup(store, red_operatives=3)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, BLUE_WORDS[0])
        master.forfeit_turn(game.id, Team.RED, "Red gave up. Turn forfeited.")
        proposal = game.proposals[Team.RED][0]
        assert game.pending_proposal(Team.RED) is None
        assert proposal.status == ProposalStatus.REJECTED
        assert proposal.resolved_at is not None

    def test_no_votes_during_banter(self, store, master):
        game = _setup(store, red_operatives=3)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, BLUE_WORDS[0])
        pid = game.proposals[Team.RED][0].id
        master.forfeit_turn(game.id, Team.RED, "Red gave up. Turn forfeited.")
        with pytest.raises(WrongPhaseError):
            master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert not game.card_for(BLUE_WORDS[0]).revealed

    def test_no_votes_during_other_teams_turn(self, store, master):
        game = _setup(store, red_operatives=3)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, BLUE_WORDS[0])
        pid = game.proposals[Team.RED][0].id
        master.forfeit_turn(game.id, Team.RED, "Red gave up. Turn forfeited.")
        master.end_banter(game.id)
        master.submit_hint(game.id, Team.BLUE, "blue-spy", "water", 1)
        with pytest.raises(NotYourTurnError):
            master.vote_on_proposal(game.id, Team.RED, "red-op-2", pid, VoteDecision.ACCEPT)
        assert not game.card_for(BLUE_WORDS[0]).revealed
        assert game.turn.active_team == Team.BLUE
        assert game.turn.phase == Phase.GUESS

    def test_next_turn_not_blocked_by_forfeited_proposal(self, store, master):
        game = _setup(store, red_operatives=3, blue_operatives=1)
        master.submit_hint(game.id, Team.RED, "red-spy", "fruit", 1)
        master.create_proposal(game.id, Team.RED, "red-op-1", ProposalKind.GUESS, "apple")
        master.forfeit_turn(game.id, Team.RED, "Red gave up. Turn forfeited.")
        master.end_banter(game.id)
        master.submit_hint(game.id, Team.BLUE, "blue-spy", "water", 1)
        master.create_proposal(game.id, Team.BLUE, "blue-op-1", ProposalKind.END_TURN)
        master.end_banter(game.id)
        master.submit_hint(game.id, Team.RED, "red-spy", "tree", 1)
        master.create_proposal(game.id, Team.RED, "red-op-2", ProposalKind.GUESS, "forest")
        assert game.pending_proposal(Team.RED).word == "forest"

    def test_forfeit_after_game_over_is_noop(self, store, master):
        game = _setup(store)
        game.winner = Team.BLUE
        master.forfeit_turn(game.id, Team.RED, "late")
        assert game.turn.phase == Phase.HINT
        assert game.messages == []

    def test_seat_queries(self, store, master):
        game = _setup(store, red_operatives=2, human_team=Team.RED, human_role=SeatRole.OPERATIVE)
        assert master.has_human_seat(game, Team.RED)
        assert not master.has_human_seat(game, Team.BLUE)
        assert master.operative_count(game, Team.RED) == 3
        assert [s.id for s in master.agent_operatives(game, Team.RED)] == ["red-op-1", "red-op-2"]
        assert master.spymaster(game, Team.RED).id == "red-spy"
