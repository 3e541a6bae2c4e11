"""
Seat Agent — LLM-powered player for agent seats.

Uses Gemini (text-only) through google-genai to implement the AgentPort:
  1. Spymaster hints     — one-word clue plus a count, never a board word
  2. Operative turns     — discuss, propose a guess or end of turn, vote
  3. Banter / reactions  — short in-character chatter between turns and after the game

All methods are stateless; the scheduler hands over a fresh situation each call.
"""
import logging
from typing import Any, List, Optional

from google import genai
from google.genai import types

from config import settings
from models.game import CardOwner, Phase, SeatRole, other_team, owner_for
from agents.agent_port import (
    AgentPort, AgentPortError, AgentResponse, AgentSituation, SituationMode,
    build_transcript, extract_json, parse_response, visible_board,
)

logger = logging.getLogger(__name__)


# ── Prompt fragments ──────────────────────────────────────────────────────────

_DEFAULT_PERSONALITY = "You are a thoughtful teammate."

_RESPONSE_FORMAT = (
    "RESPONSE FORMAT: return ONLY valid JSON:\n"
    "{\n"
    '  "message": "Your natural language message (be conversational)",\n'
    '  "action": { "type": "...", ... }\n'
    "}\n"
    "\n"
    "RULES FOR YOUR MESSAGE:\n"
    "- Be conversational and natural, like a real teammate\n"
    "- Refer to other players by name when responding to them\n"
    "- Do NOT repeat what someone else already said\n"
    "- Keep it concise (1-3 sentences)\n"
    "- If you agree and have nothing to add, just say so briefly"
)


def _words(situation: AgentSituation, owner: CardOwner) -> str:
    return ", ".join(c.word for c in situation.game.cards if c.owner == owner and not c.revealed) or "none"


def _spymaster_hint_instructions(situation: AgentSituation) -> str:
    game, team = situation.game, situation.team
    enemy = other_team(team)
    revealed = [f"{c.word}({c.owner.value})" for c in game.cards if c.revealed]
    lines = [
        f"You are the SPYMASTER for team {team.value.upper()}.",
        "",
        f"YOUR TEAM'S WORDS (you want your team to guess these): {_words(situation, owner_for(team))}",
        f"ENEMY WORDS ({enemy.value}, DANGEROUS): {_words(situation, owner_for(enemy))}",
        f"ASSASSIN (INSTANT LOSS if your team guesses this!): {_words(situation, CardOwner.ASSASSIN)}",
        f"NEUTRAL (wastes a guess, avoid): {_words(situation, CardOwner.NEUTRAL)}",
    ]
    if revealed:
        lines.append(f"ALREADY REVEALED (ignore these): {', '.join(revealed)}")
    lines += [
        "",
        "YOUR TASK: Give a ONE-WORD hint and a number.",
        "- The hint should connect as many of YOUR TEAM's words as possible.",
        "- The hint must NOT be any word on the board (including revealed words).",
        "- If the hint could also match an ENEMY or ASSASSIN word, pick a safer one.",
        "- The number is how many of YOUR TEAM's words relate to the hint.",
        "",
        f"FORBIDDEN WORDS (your hint MUST NOT be any of these): {', '.join(game.board_words())}",
        "",
        'Set message to "..." (do NOT explain your reasoning).',
        'Set action: {"type":"hint","word":"yourword","count":N,"targets":["word1","word2"]}',
    ]
    return "\n".join(lines)


def _operative_guess_instructions(situation: AgentSituation) -> str:
    turn = situation.game.turn
    theirs = [p for p in situation.pending_proposals if p.created_by != situation.seat.id]
    if theirs:
        options = (
            f'  THERE IS A PENDING PROPOSAL (ID="{theirs[0].id}"). You MUST vote on it:\n'
            '  {"type":"vote","proposalId":"<ID>","decision":"accept"|"reject"}'
        )
    else:
        options = (
            '  {"type":"propose_guess","word":"boardword"}: propose a guess\n'
            '  {"type":"propose_end_turn"}: propose stopping\n'
            '  {"type":"none"}: just discuss, no action yet'
        )
    return "\n".join([
        f"You are an OPERATIVE on team {situation.team.value}.",
        f'The hint is: "{turn.hint_word}" ({turn.hint_count})',
        f"Guesses: {turn.guesses_made}/{turn.max_guesses}",
        "",
        "Think about which unrevealed words on the board connect to the hint.",
        "In your message, share your reasoning with your team. Discuss, agree, or disagree.",
        "",
        "Available actions (pick ONE):",
        options,
        "",
        "RULES:",
        "- Only ONE proposal can be pending at a time. If there is one, you MUST vote on it.",
        "- You CANNOT vote on your own proposal.",
        "- Only propose unrevealed words that are actually on the board.",
    ])


def _role_instructions(situation: AgentSituation) -> str:
    seat, game = situation.seat, situation.game
    phase = game.turn.phase

    if situation.mode == SituationMode.END_GAME:
        won = game.winner == situation.team
        return "\n".join([
            f"The game is over. Team {game.winner.value if game.winner else '?'} won ({game.win_reason}).",
            "Your team WON. Gloat a little." if won else "Your team LOST. Take it with humour, or demand a rematch.",
            "Reply with one or two sentences of cross-team trash talk.",
            'Set action: {"type":"none"}',
        ])
    if situation.mode == SituationMode.REVEAL_REACTION:
        return "\n".join([
            "Your team just made a correct guess.",
            "React to the latest reveal in ONE short sentence. Take no game action.",
            'Set action: {"type":"none"}',
        ])
    if phase == Phase.BANTER:
        outgoing = game.turn.previous_team or game.turn.active_team
        if situation.team == outgoing:
            mood = "Your team's turn just ended. Comment on how it went and tease the other team."
        else:
            mood = "The other team's turn just ended. Tease them about it; your team is up next."
        return "\n".join([
            "It's the break between turns. Both teams can hear you.",
            mood,
            "Keep it to one or two sentences of friendly trash talk.",
            'Set action: {"type":"none"}',
        ])
    if seat.role == SeatRole.SPYMASTER:
        if phase == Phase.HINT:
            return _spymaster_hint_instructions(situation)
        return "\n".join([
            "You are the SPYMASTER. Guessing phase is active: you MUST stay silent.",
            'Do NOT speak or give guidance. Set message to "..." and action: {"type":"none"}',
        ])
    if phase == Phase.GUESS:
        return _operative_guess_instructions(situation)
    return "\n".join([
        "You are an OPERATIVE. Waiting for the spymaster to give a hint.",
        "You can chat casually but take no game action.",
        'Set action: {"type":"none"}',
    ])


def build_system_prompt(situation: AgentSituation) -> str:
    seat = situation.seat
    personality = seat.personality or _DEFAULT_PERSONALITY
    return "\n".join([
        f'You are "{seat.name}", playing a Codenames-style word game on team {situation.team.value}.',
        f"Your role: {seat.role.value}.",
        personality,
        "",
        "IDENTITY RULES:",
        f'- You are ALWAYS "{seat.name}". Never confuse yourself with another player.',
        '- Messages from other players appear as "TheirName: message".',
        "",
        _RESPONSE_FORMAT,
        "",
        _role_instructions(situation),
    ])


def build_state_prompt(situation: AgentSituation) -> str:
    game, seat = situation.game, situation.seat
    if situation.pending_proposals:
        rows = []
        for p in situation.pending_proposals:
            author = game.seats[p.created_by].name if p.created_by in game.seats else "?"
            votes = {game.seats[k].name if k in game.seats else k: v.value for k, v in p.votes.items()}
            word = f' "{p.word}"' if p.word else ""
            rows.append(f'  ID="{p.id}" {p.kind.value}{word} by {author} votes={votes}')
        proposals = "\n".join(rows)
    else:
        proposals = "  none"
    lines = [
        f"[GAME STATE] Team: {situation.team.value} | Your role: {seat.role.value} | "
        f"Turn: {game.turn.active_team.value}/{game.turn.phase.value}",
        f"Score: Red {game.remaining(CardOwner.RED)} left, Blue {game.remaining(CardOwner.BLUE)} left",
        f"Board: {visible_board(game, seat)}",
        f"Pending proposals:\n{proposals}",
    ]
    if situation.rejected_hints:
        lines.append(
            "Your previous hints were rejected because they are words on the board or invalid: "
            f"{', '.join(situation.rejected_hints)}. Pick a DIFFERENT word that is NOT on the board."
        )
    lines.append('Now it\'s your turn to respond. Return JSON with "message" and "action".')
    return "\n".join(lines)


# Module-level Gemini client cache — created once on first use.
_genai_client: Optional[Any] = None


def _client() -> Any:
    global _genai_client
    if _genai_client is None:
        if not settings.gemini_api_key:
            raise AgentPortError("GEMINI_API_KEY not set")
        _genai_client = genai.Client(api_key=settings.gemini_api_key)
    return _genai_client


# ── Seat Agent ────────────────────────────────────────────────────────────────

class GeminiSeatAgent(AgentPort):
    """AgentPort backed by Gemini. Stateless."""

    async def respond(self, situation: AgentSituation) -> AgentResponse:
        limit = settings.end_game_history_limit if situation.mode == SituationMode.END_GAME else settings.history_limit
        transcript = build_transcript(situation.seat.name, situation.history, build_state_prompt(situation), limit)
        contents: List[types.Content] = [
            types.Content(
                role="model" if entry.role == "assistant" else "user",
                parts=[types.Part(text=entry.content)],
            )
            for entry in transcript
        ]

        client = _client()
        try:
            response = await client.aio.models.generate_content(
                model=situation.resolved_model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=build_system_prompt(situation),
                    temperature=settings.agent_temperature,
                    max_output_tokens=settings.agent_max_output_tokens,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:
            logger.error("[%s] Gemini call failed for %s: %s", situation.game.id, situation.seat.name, exc)
            raise AgentPortError(f"Gemini call failed: {exc}") from exc

        text = response.text
        if not text:
            raise AgentPortError("Gemini response missing content")
        parsed = parse_response(extract_json(text))
        logger.info(
            "[%s] %s → %s: %.80s", situation.game.id, situation.seat.name, parsed.action.type.value, parsed.message,
        )
        return parsed


# Singleton
seat_agent = GeminiSeatAgent()
