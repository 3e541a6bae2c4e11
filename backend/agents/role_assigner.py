"""
Role Assignment — deterministic seat and board setup.

Responsibilities:
- Seat the human (unless spectating) and the agent players on both teams
- Give agent seats default names, personalities and narration voices
- Pick one spymaster per team
- Deal the 25-card board and choose the starting team

Called once by the game router when a game is created.
"""
import logging
import random
import uuid
from typing import Dict, List

from config import settings
from models.game import (
    Card, CardOwner, CreateGameRequest, GameState, Seat, SeatRole, SeatType,
    Team, TurnState, BOARD_SIZE, OWNER_DISTRIBUTION, other_team,
)
from models.words import WORD_POOL

logger = logging.getLogger(__name__)


# ── Agent personalities (prompt fragments) ────────────────────────────────────
PERSONALITIES: List[str] = [
    "You overthink everything and second-guess yourself constantly. Every choice stresses you out.",
    "You're impatient and get fired up easily. You want to guess NOW and hate long deliberation. Not rude, just intense.",
    "You're super relaxed and laid-back. Nothing fazes you. You go with the flow and keep things mellow.",
    "You love trash talk, aimed at the other team and (lovingly) at your own teammates.",
    "You're endlessly positive and supportive. You hype up every teammate's idea, even the bad ones.",
]

# Prebuilt narration voices, assigned round-robin across agent seats.
VOICE_POOL: List[str] = [
    "Puck", "Charon", "Kore", "Fenrir", "Aoede", "Leda", "Orus", "Zephyr",
]

MAX_AGENTS_PER_TEAM = 8


class RoleAssigner:

    def deal_board(self) -> List[Card]:
        words = random.sample(WORD_POOL, BOARD_SIZE)
        owners: List[CardOwner] = []
        for owner, count in OWNER_DISTRIBUTION.items():
            owners.extend([owner] * count)
        random.shuffle(owners)
        return [Card(word=word, owner=owner) for word, owner in zip(words, owners)]

    def _agent_counts(self, request: CreateGameRequest) -> Dict[Team, int]:
        spectator = request.human_role == "spectator"
        home = request.human_team
        counts = {
            home: 3 if spectator else 2,
            other_team(home): 3,
        }
        counts.update(request.agent_counts)
        for team, count in counts.items():
            if not 0 <= count <= MAX_AGENTS_PER_TEAM:
                raise ValueError(f"{team.value} agent count must be between 0 and {MAX_AGENTS_PER_TEAM}")
        return counts

    def assign_seats(self, request: CreateGameRequest) -> Dict[str, Seat]:
        """
        Build every seat for a new game.

        Spymaster per team: the human if they asked for it, otherwise the
        first agent seat, otherwise whichever seat exists.
        """
        counts = self._agent_counts(request)
        seats: Dict[str, Seat] = {}

        if request.human_role != "spectator":
            human_id = f"human-{uuid.uuid4()}"
            seats[human_id] = Seat(
                id=human_id,
                name=request.human_name.strip() or "You",
                type=SeatType.HUMAN,
                role=SeatRole(request.human_role),
                team=request.human_team,
            )

        personalities = random.sample(PERSONALITIES, len(PERSONALITIES))
        agent_index = 0
        for team in (Team.RED, Team.BLUE):
            configs = request.agent_configs.get(team, [])
            for i in range(counts[team]):
                cfg = configs[i] if i < len(configs) else None
                seat_id = f"agent-{team.value}-{i + 1}-{uuid.uuid4().hex[:8]}"
                personality = None
                if not request.neutral_mode:
                    personality = (cfg.personality or "").strip() if cfg else ""
                    personality = personality or personalities[agent_index % len(personalities)]
                seats[seat_id] = Seat(
                    id=seat_id,
                    name=((cfg.name or "").strip() if cfg else "") or f"{team.value.capitalize()}-{i + 1}",
                    type=SeatType.AGENT,
                    role=SeatRole.OPERATIVE,
                    team=team,
                    personality=personality,
                    model_override=((cfg.model or "").strip() if cfg else "") or None,
                    voice=VOICE_POOL[agent_index % len(VOICE_POOL)],
                )
                agent_index += 1

        for team in (Team.RED, Team.BLUE):
            team_seats = [s for s in seats.values() if s.team == team]
            if not team_seats:
                raise ValueError(f"Team {team.value} has no players")
            if not any(s.role == SeatRole.SPYMASTER for s in team_seats):
                agents = [s for s in team_seats if s.type == SeatType.AGENT]
                (agents[0] if agents else team_seats[0]).role = SeatRole.SPYMASTER
            if not any(s.role == SeatRole.OPERATIVE for s in team_seats):
                raise ValueError(f"Team {team.value} needs at least one operative besides the spymaster")
        return seats

    def build_game(self, request: CreateGameRequest) -> GameState:
        seats = self.assign_seats(request)
        game = GameState(
            cards=self.deal_board(),
            seats=seats,
            turn=TurnState(active_team=random.choice([Team.RED, Team.BLUE])),
            agent_model=(request.agent_model or "").strip() or settings.agent_model,
            neutral_mode=request.neutral_mode,
        )
        roles = {
            team.value: sorted(f"{s.name}:{s.role.value}" for s in game.team_seats(team))
            for team in (Team.RED, Team.BLUE)
        }
        logger.info(f"[{game.id}] Seats assigned: {roles}")
        return game


# Singleton
role_assigner = RoleAssigner()
