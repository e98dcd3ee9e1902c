"""Round orchestration: phase sequencing, timers and participant messaging."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from .config import MAX_PLAYERS, MAX_ROUNDS
from .engine import ActionResult, GameEngine, JoinResult, KillResult, is_address
from .enums import PhaseKind, Winner
from .exceptions import CollaboratorFailure
from .logging_config import bind_session, clear_session
from .players import Player, PlayerId
from .scheduler import PhaseScheduler, TimerKey, TimerKind
from .session import Session, SessionState, VoteResolution
from .transport import ChoiceOption, MessagingTransport

log = structlog.get_logger(__name__)

JOIN_WINDOW_KEY = TimerKey(TimerKind.JOIN_WINDOW)
JOIN_ACTION = "join-game"
CANCEL_ACTION = "cancel-game"
KILL_ACTION_PREFIX = "kill-"
VOTE_ACTION_PREFIX = "vote-"


def _short_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


class RoundOrchestrator:
    """Drives one session through its rounds and talks to the transport.

    Every timeout handler re-reads the engine state before acting, so a timer
    that fires after an event already advanced the phase does nothing.
    """

    def __init__(
        self,
        engine: GameEngine,
        transport: MessagingTransport,
        scheduler: Optional[PhaseScheduler] = None,
    ) -> None:
        self.engine = engine
        self.transport = transport
        self.scheduler = scheduler or PhaseScheduler()
        self.config = engine.config

    @property
    def session(self) -> Session:
        return self.engine.session

    @property
    def host_id(self) -> PlayerId:
        return self.engine.host_id

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def open_lobby(
        self, starter_id: PlayerId, starter_name: str, origin_conversation_id: str
    ) -> Optional[str]:
        """Create the session and its lobby group, admitting the starter."""

        if self.session.state is not SessionState.IDLE:
            await self.reply(origin_conversation_id, "❌ Error: A game is already in progress.")
            return None
        self.engine.create_session(origin_conversation_id)
        bind_session(origin_conversation_id)
        try:
            lobby_id = await self.transport.create_group([self.host_id])
        except CollaboratorFailure:
            log.error("lobby_creation_failed", correlation_id=origin_conversation_id, exc_info=True)
            self.engine.cleanup()
            clear_session()
            await self.reply(origin_conversation_id, "❌ Error: Could not create the game lobby.")
            return None
        self.session.lobby_group_id = lobby_id

        result = self.engine.add_player(starter_id, starter_name)
        if not result:
            self.engine.cleanup()
            clear_session()
            await self.reply(
                origin_conversation_id,
                f"❌ Error: Could not add you to the lobby. {result.reason}",
            )
            return None
        await self._add_member(starter_id)

        join_window = self.config.join_window
        await self._post_lobby_status(
            f"🚀 MAFIA Game Lobby Created!\n\nUp to {MAX_PLAYERS} players may join "
            f"within {join_window / 60:g} minutes."
        )
        await self._send_choice(
            origin_conversation_id,
            "You can cancel the game before it starts:",
            [ChoiceOption(CANCEL_ACTION, "❌ Cancel Game", "danger")],
            expires_in=self.config.cancel_window,
            fallback_text=(
                f"🎮 Lobby open! (Cancel option available for {self.config.cancel_window:g} seconds)"
            ),
        )
        if self.session.state is SessionState.WAITING_FOR_PLAYERS:
            self.scheduler.schedule(JOIN_WINDOW_KEY, join_window, self.on_join_window_closed)
        log.info("lobby_opened", lobby_id=lobby_id, correlation_id=origin_conversation_id)
        return lobby_id

    async def join(self, player_id: PlayerId, display_name: str, reply_to: str) -> JoinResult:
        """Admit a player, notify anyone evicted, and start once the lobby is full."""

        result = self.engine.add_player(player_id, display_name)
        if not result:
            await self.reply(reply_to, f"❌ Cannot join at this time. {result.reason}")
            return result

        if result.evicted is not None:
            evicted = result.evicted
            await self._remove_member(evicted.player_id)
            await self._direct(
                evicted.player_id,
                "⚠️ You were removed from the lobby to make room for a new player.\n\n"
                "You can join again if there's space.",
            )
            await self._announce(
                f"⚠️ {evicted.display_name} was removed to make room for {display_name.strip()}."
            )
        await self._add_member(player_id)

        players = self.session.players
        roster = ", ".join(player.display_name for player in players)
        await self._post_lobby_status(
            f"🚀 MAFIA LOBBY\n\nPlayers joined: {roster} ({len(players)}/{MAX_PLAYERS})"
        )
        await self.reply(
            reply_to, f"✅ You joined the game! Players: {roster} ({len(players)}/{MAX_PLAYERS})"
        )

        if (
            self.session.state is SessionState.WAITING_FOR_PLAYERS
            and len(self.session.roster) >= MAX_PLAYERS
        ):
            self.scheduler.cancel(JOIN_WINDOW_KEY)
            await self.start_game()
        return result

    async def on_join_window_closed(self) -> None:
        if self.session.state not in (
            SessionState.LOBBY_CREATED,
            SessionState.WAITING_FOR_PLAYERS,
        ):
            return
        self.engine.close_join_window()
        if self.engine.can_start():
            await self.start_game()
        else:
            await self.abort("Not enough players joined. Game cancelled.")

    async def cancel(self, requester_id: PlayerId, reply_to: str) -> bool:
        """Cancel the session; only possible before roles are assigned."""

        if self.session.state not in (
            SessionState.LOBBY_CREATED,
            SessionState.WAITING_FOR_PLAYERS,
        ):
            await self.reply(reply_to, "❌ Cannot cancel game. Game has already started.")
            return False
        log.info("session_cancelled", requester_id=requester_id)
        await self.abort("❌ Game cancelled by player.")
        await self.reply(reply_to, "✅ Game cancelled.")
        return True

    async def abort(self, notice: str) -> None:
        """Tear the session down without a winner."""

        lobby_id = self.session.lobby_group_id
        self.scheduler.cancel_all()
        self.engine.cleanup()
        clear_session()
        if lobby_id:
            await self.reply(lobby_id, notice)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def start_game(self) -> bool:
        """Assign roles, brief every player privately and open round 1."""

        if not self.engine.can_start():
            log.info("start_skipped", state=self.session.state.value)
            return False
        self.scheduler.cancel(JOIN_WINDOW_KEY)
        self.engine.assign_roles()
        for player in self.session.players:
            await self._direct(player.player_id, self._role_briefing(player))
        await self._announce("Roles assigned.\n\nRound 1 is starting.")
        if self.session.state is not SessionState.ASSIGN_ROLES:
            return False
        self.engine.start_round(1)
        await self.start_task_phase(1)
        return True

    async def start_task_phase(self, round_number: int) -> None:
        expected = SessionState.for_phase(round_number, PhaseKind.TASKS)
        await self._announce(
            f"🛠️ Round {round_number} — Task Phase\n\n"
            "Complete your assigned task by mentioning @mafia with your answer: "
            "@mafia /task <value>"
        )
        players = self.engine.alive_players()
        for index, player in enumerate(players):
            if self.session.state is not expected:
                return
            task = self.engine.task_for(player.player_id)
            mention = await self._mention(player)
            if task is None:
                await self._announce(f"{mention}\n\nYou have no task this round.")
                continue
            await self._announce(
                f"{mention}\n\n🛠️ Your Task:\n\n{task.question}\n\n"
                "Submit your answer: @mafia /task <answer>"
            )
            if index < len(players) - 1 and self.config.task_message_interval > 0:
                await asyncio.sleep(self.config.task_message_interval)
        self._schedule_phase_timeout(round_number, PhaseKind.TASKS, self.on_tasks_timeout)

    async def on_tasks_timeout(self, round_number: int) -> None:
        expected = SessionState.for_phase(round_number, PhaseKind.TASKS)
        if self.engine.advance_phase(expected):
            await self.start_kill_phase(round_number)

    async def start_kill_phase(self, round_number: int) -> None:
        kill_duration = self.config.phase_durations.kill
        await self._announce(
            f"🔪 Round {round_number} — Kill Phase\n\n"
            f"Kill phase duration: {kill_duration:g} seconds.\n"
            "The phase will automatically advance after the time limit."
        )
        adversary = self.session.adversary
        if adversary is not None and adversary.is_alive:
            await self._direct(
                adversary.player_id,
                f"Round {round_number} Kill Phase.\n\n"
                f"Success chance: {self.session.kill_success_chance * 100:.0f}%\n"
                f"Max attempts: {self.session.max_kill_attempts}\n"
                f"Cooldown: {self.session.kill_cooldown:g} seconds per attempt\n"
                f"Phase duration: {kill_duration:g} seconds\n\n"
                "Select a target using the buttons below:",
            )
            await self._send_kill_choices(round_number, adversary)
        self._schedule_phase_timeout(round_number, PhaseKind.KILL, self.on_kill_timeout)

    async def on_kill_timeout(self, round_number: int) -> None:
        expected = SessionState.for_phase(round_number, PhaseKind.KILL)
        if self.engine.advance_phase(expected):
            await self.start_discussion_phase(round_number)

    async def start_discussion_phase(self, round_number: int) -> None:
        await self._announce(
            f"💬 Discussion Phase — {self.config.phase_durations.discussion:g} seconds.\n\n"
            "Talk freely."
        )
        self._schedule_phase_timeout(
            round_number, PhaseKind.DISCUSSION, self.on_discussion_timeout
        )

    async def on_discussion_timeout(self, round_number: int) -> None:
        expected = SessionState.for_phase(round_number, PhaseKind.DISCUSSION)
        if self.engine.advance_phase(expected):
            await self.start_voting_phase(round_number)

    async def start_voting_phase(self, round_number: int) -> None:
        lobby_id = self.session.lobby_group_id
        await self._announce("🗳️ Voting Phase\n\nVote to eliminate a player using the buttons below:")
        if lobby_id:
            players = self.engine.alive_players()
            options = [
                ChoiceOption(
                    f"{VOTE_ACTION_PREFIX}{player.player_id}",
                    f"🗳️ {await self._choice_label(player)}",
                )
                for player in players
            ]
            await self._send_choice(
                lobby_id,
                "🗳️ Vote to eliminate a player:\n\nClick a button below to vote.",
                options,
                expires_in=self.config.phase_durations.voting,
                fallback_text=(
                    "🗳️ Voting Phase\n\nUse: @mafia vote <username>\n\n"
                    f"Alive players: {', '.join(self.engine.alive_usernames())}"
                ),
            )
        self._schedule_phase_timeout(round_number, PhaseKind.VOTING, self.on_voting_timeout)

    async def on_voting_timeout(self, round_number: int) -> None:
        await self.process_voting(round_number)

    async def process_voting(self, round_number: int) -> None:
        """Resolve the round's votes, then roll over or end the session."""

        expected = SessionState.for_phase(round_number, PhaseKind.VOTING)
        if self.session.state is not expected:
            return
        resolution = self.engine.resolve_votes()
        eliminated = (
            self.engine.get_player(resolution.eliminated_id)
            if resolution.eliminated_id
            else None
        )
        await self._announce_vote_outcome(resolution, eliminated)
        if self.session.state is not expected:
            return

        winner = self.engine.check_win_condition() if eliminated is not None else None
        if winner is not Winner.ALLIES:
            winner = None
            self.engine.advance_phase(expected)
            if self.session.state is SessionState.GAME_END:
                winner = self.engine.check_win_condition() or Winner.ADVERSARY

        if winner is not None:
            await self.end_game(winner)
            return
        await self.start_task_phase(round_number + 1)

    async def end_game(self, winner: Winner) -> None:
        """Cancel every timer, reset the session and announce the winner."""

        lobby_id = self.session.lobby_group_id
        self.scheduler.cancel_all()
        self.engine.cleanup()
        clear_session()
        log.info("session_ended", winner=winner.value)
        if not lobby_id:
            return
        if winner is Winner.ALLIES:
            await self.reply(lobby_id, "🏆 TOWN WINS! Mafia was eliminated.")
        else:
            await self.reply(lobby_id, f"🔥 MAFIA WINS! Survived all {MAX_ROUNDS} rounds.")

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    async def submit_task(self, player_id: PlayerId, answer: str, reply_to: str) -> ActionResult:
        if not answer.strip():
            usage = "Usage: @mafia /task <value>"
            await self.reply(reply_to, usage)
            return ActionResult(False, usage)
        result = self.engine.complete_task(player_id, answer)
        await self.reply(reply_to, f"{'✅' if result else '❌'} {result.reason}")
        return result

    async def attempt_kill(
        self, adversary_id: PlayerId, target_identifier: str, reply_to: str
    ) -> KillResult:
        """Run a kill attempt and advance to discussion early when it lands."""

        address_match: Optional[PlayerId] = None
        if is_address(target_identifier):
            address_match = await self._match_address(target_identifier)
        result = self.engine.attempt_kill(
            adversary_id, target_identifier, address_match=address_match
        )
        if not result.success:
            await self.reply(reply_to, result.message)
            return result

        round_number = self.session.round
        kill_state = self.session.state
        # Cancelled before any send so the phase timeout cannot race the announcement.
        self.scheduler.cancel(TimerKey.for_phase(PhaseKind.KILL, round_number))
        await self.reply(reply_to, result.message)
        await self._announce(result.message)

        winner = self.engine.check_win_condition()
        if winner is not None:
            await self.end_game(winner)
            return result
        if self.session.state is kill_state:
            self.scheduler.schedule(
                TimerKey(TimerKind.KILL_GRACE, round_number),
                self.config.kill_advance_delay,
                partial(self.on_kill_timeout, round_number),
            )
        return result

    async def attempt_kill_on(
        self, adversary_id: PlayerId, target_id: PlayerId, reply_to: str
    ) -> Optional[KillResult]:
        target = self.engine.get_player(target_id)
        if target is None:
            await self.reply(reply_to, "❌ Target player not found.")
            return None
        return await self.attempt_kill(adversary_id, target.display_name, reply_to)

    async def cast_vote(self, voter_id: PlayerId, target_username: str, reply_to: str) -> ActionResult:
        result = self.engine.cast_vote(voter_id, target_username)
        if result:
            await self.reply(reply_to, f"✅ {result.reason}")
        else:
            await self.reply(reply_to, f"❌ {result.reason}")
        return result

    async def cast_vote_for(
        self, voter_id: PlayerId, target_id: PlayerId, reply_to: str
    ) -> Optional[ActionResult]:
        target = self.engine.get_player(target_id)
        if target is None:
            await self.reply(reply_to, "❌ Target player not found.")
            return None
        return await self.cast_vote(voter_id, target.display_name, reply_to)

    # ------------------------------------------------------------------
    # Messaging helpers
    # ------------------------------------------------------------------

    async def reply(self, conversation_id: str, text: str) -> bool:
        """Best-effort text send; failures are logged and reported as False."""

        try:
            await self.transport.send_text(conversation_id, text)
        except CollaboratorFailure:
            log.warning("send_failed", conversation_id=conversation_id, exc_info=True)
            return False
        return True

    async def _announce(self, text: str) -> None:
        lobby_id = self.session.lobby_group_id
        if lobby_id:
            await self.reply(lobby_id, text)

    async def _direct(self, player_id: PlayerId, text: str) -> bool:
        try:
            channel_id = await self.transport.open_direct_channel(player_id)
        except CollaboratorFailure:
            log.warning("direct_channel_failed", player_id=player_id, exc_info=True)
            return False
        return await self.reply(channel_id, text)

    async def _send_choice(
        self,
        conversation_id: str,
        description: str,
        options: Sequence[ChoiceOption],
        *,
        expires_in: float,
        fallback_text: str,
    ) -> None:
        if not options:
            return
        try:
            await self.transport.send_choice(
                conversation_id, description, options, self.engine.clock() + expires_in
            )
        except CollaboratorFailure:
            log.warning("choice_send_failed", conversation_id=conversation_id, exc_info=True)
            await self.reply(conversation_id, fallback_text)

    async def _post_lobby_status(self, text: str) -> None:
        origin = self.session.correlation_id
        if not origin:
            return
        await self._send_choice(
            origin,
            text,
            [ChoiceOption(JOIN_ACTION, "🎮 Join Game")],
            expires_in=max(0.0, (self.session.join_deadline or 0.0) - self.engine.clock()),
            fallback_text=f"{text}\n\nJoin with: @mafia /join",
        )

    async def _send_kill_choices(self, round_number: int, adversary: Player) -> None:
        targets = [
            player
            for player in self.engine.alive_players()
            if player.player_id != adversary.player_id
        ]
        if not targets:
            return
        try:
            channel_id = await self.transport.open_direct_channel(adversary.player_id)
        except CollaboratorFailure:
            log.warning("direct_channel_failed", player_id=adversary.player_id, exc_info=True)
            return
        options = [
            ChoiceOption(
                f"{KILL_ACTION_PREFIX}{player.player_id}",
                f"🔪 {await self._choice_label(player)}",
                "danger",
            )
            for player in targets
        ]
        await self._send_choice(
            channel_id,
            "🔪 Kill Phase - Select a target:\n\nClick a button below to attempt a kill.",
            options,
            expires_in=self.config.phase_durations.kill,
            fallback_text=(
                f"Round {round_number} Kill Phase.\n\n"
                "Try killing a player using:\nkill <address> or kill <username>\n\n"
                f"Alive players: {', '.join(player.display_name for player in targets)}"
            ),
        )

    async def _resolve_address(self, player: Player) -> Optional[str]:
        lobby_id = self.session.lobby_group_id
        if not lobby_id:
            return None
        try:
            return await self.transport.resolve_address(lobby_id, player.player_id)
        except CollaboratorFailure:
            log.warning("address_lookup_failed", player_id=player.player_id, exc_info=True)
            return None

    async def _mention(self, player: Player) -> str:
        address = await self._resolve_address(player)
        return f"@{address}" if address else f"@{player.display_name}"

    async def _choice_label(self, player: Player) -> str:
        address = await self._resolve_address(player)
        if address:
            return f"{player.display_name} ({_short_address(address)})"
        return player.display_name

    async def _match_address(self, identifier: str) -> Optional[PlayerId]:
        wanted = identifier.strip().casefold()
        for player in self.engine.alive_players():
            address = await self._resolve_address(player)
            if address and address.casefold() == wanted:
                return player.player_id
        return None

    async def _add_member(self, player_id: PlayerId) -> None:
        lobby_id = self.session.lobby_group_id
        if not lobby_id:
            return
        try:
            await self.transport.add_member(lobby_id, player_id)
        except CollaboratorFailure:
            log.warning("add_member_failed", player_id=player_id, exc_info=True)

    async def _remove_member(self, player_id: PlayerId) -> None:
        lobby_id = self.session.lobby_group_id
        if not lobby_id or player_id.casefold() == self.host_id.casefold():
            return
        try:
            await self.transport.remove_member(lobby_id, player_id)
        except CollaboratorFailure:
            log.warning("remove_member_failed", player_id=player_id, exc_info=True)

    def _schedule_phase_timeout(
        self,
        round_number: int,
        kind: PhaseKind,
        handler: Callable[[int], Awaitable[None]],
    ) -> None:
        expected = SessionState.for_phase(round_number, kind)
        if self.session.state is not expected:
            log.debug("phase_left_before_timer", expected=expected.value)
            return
        duration = getattr(self.config.phase_durations, kind.value)
        self.scheduler.schedule(
            TimerKey.for_phase(kind, round_number), duration, partial(handler, round_number)
        )

    async def _announce_vote_outcome(
        self, resolution: VoteResolution, eliminated: Optional[Player]
    ) -> None:
        if resolution.no_votes:
            await self._announce("No votes cast. No one eliminated.")
        elif eliminated is not None:
            if eliminated.is_adversary:
                await self._announce(
                    f"🔥 @{eliminated.display_name} was eliminated.\n\nThey were a MAFIA."
                )
            else:
                await self._announce(
                    f"❌ @{eliminated.display_name} was eliminated.\n\nThey were a TOWN."
                )
        else:
            await self._announce("Tie or no majority. No one eliminated.")

    def _role_briefing(self, player: Player) -> str:
        if player.is_adversary:
            return (
                "[Private Message]\n\n"
                "You are the 🔥 MAFIA.\n\n"
                "You can attempt kills using:\n"
                "@mafia kill <username>\n\n"
                f"Success chance: {self.session.kill_success_chance * 100:.0f}%\n"
                f"Max attempts per round: {self.session.max_kill_attempts}\n"
                f"Cooldown: {self.session.kill_cooldown:g} seconds per attempt"
            )
        return (
            "[Private Message]\n\n"
            "You are a ✅ TOWN MEMBER.\n\n"
            "Complete tasks using:\n"
            "@mafia /task <value>\n\n"
            "Your goal is to identify and vote out the mafia!"
        )
