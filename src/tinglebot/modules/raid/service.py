"""
Raid Service
============

Purpose
-------
Runs village raids: starting them behind a global cooldown, seating
characters, resolving turns, skipping idle players, and timing raids out.

Domain
------
- Global raid cooldown (Redis key with a TTL)
- Village, KO and blight checks on join
- Turn resolution: roll, difficulty penalty, outcome table, hearts and damage
- Turn order that survives concurrent writers
- Timeouts that KO every participant

Concurrency
-----------
Turns can race: two players pressing the button, or the skip timer firing
while a player acts. Every write reloads the raid inside a fresh transaction
and relies on the row ``version``. A lost race raises ``StaleDataError``,
the attempt is retried (3 attempts by default) and, once attempts run out,
``ConcurrencyConflictError`` reaches the caller. Turn processing also holds
a short Redis lock per raid so bot processes do not spin against each other.
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from tinglebot.core.config.config import Config
from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import LogContext, get_logger, safe_extra
from tinglebot.core.redis.service import RedisService
from tinglebot.domain.models.base import utc_now
from tinglebot.domain.models.raid import (
    MonsterState,
    Raid,
    RaidParticipant,
    RaidResult,
    RaidStatus,
    adjusted_roll,
    normalize_village,
    resolve_battle_outcome,
)
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    CooldownActiveError,
    InvalidOperationError,
    NotFoundError,
    NotYourTurnError,
    TinglebotDomainException,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.combat.raid import Raid as RaidRow
    from tinglebot.database.models.core.character import Character
    from tinglebot.modules.character.service import CharacterService

RAID_COOLDOWN_KEY = "raid:global_cooldown"
RAID_LOCK_PREFIX = "raid:turn_lock:"


# ============================================================================
# Repository
# ============================================================================


class RaidRepository(BaseRepository["RaidRow"]):
    """Repository for Raid model."""

    pass


def raid_to_dict(raid: Raid) -> Dict[str, Any]:
    current = raid.current_participant()
    return {
        "raid_id": raid.raid_id,
        "village": raid.village,
        "status": raid.status.value,
        "result": raid.result.value if raid.result else None,
        "monster": raid.monster.to_dict(),
        "participants": [p.to_dict() for p in raid.participants],
        "current_turn": raid.current_turn,
        "current_character_id": current.character_id if current else None,
        "current_user_id": current.user_id if current else None,
        "start_time": raid.start_time,
        "expires_at": raid.expires_at,
        "end_time": raid.end_time,
        "loot_eligible_removed": list(raid.loot_eligible_removed),
        "analytics": dict(raid.analytics),
    }


# ============================================================================
# RaidService
# ============================================================================


class RaidService(BaseService):
    """
    Service for raid lifecycle and turn accounting.

    Public Methods
    --------------
    - start_raid() -> Start a raid in a village (global cooldown)
    - join_raid() -> Seat a character
    - process_turn() -> Resolve the current participant's attack
    - skip_turn() -> Skip an idle participant (turn timer)
    - leave_raid() -> Leave voluntarily, keeping earned loot rights
    - get_raid() -> Read raid state
    - list_active_raids() -> Raids still in progress
    - fail_raid() -> Time a raid out and KO everyone
    - cleanup_expired_raids() -> Fail every active raid past its expiry
    - restore_participant() -> Clear the KO flag of a revived character
    - get_cooldown_remaining() -> Seconds until a new raid may start
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        character_service: CharacterService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.combat.raid import Raid as RaidRow

        self._raid_repo = RaidRepository(
            model_class=RaidRow,
            logger=get_logger(f"{__name__}.RaidRepository"),
        )
        self._characters = character_service

    # ========================================================================
    # CONFIG
    # ========================================================================

    @property
    def max_participants(self) -> int:
        return int(self.get_config("raid.max_participants", Config.RAID_MAX_PARTICIPANTS))

    @property
    def cooldown_seconds(self) -> int:
        return int(
            self.get_config("raid.global_cooldown_seconds", Config.RAID_GLOBAL_COOLDOWN_SECONDS)
        )

    @property
    def turn_skip_seconds(self) -> int:
        return int(self.get_config("raid.turn_skip_seconds", Config.RAID_TURN_SKIP_SECONDS))

    @property
    def retry_attempts(self) -> int:
        return int(
            self.get_config(
                "raid.version_retry_max_attempts", Config.RAID_VERSION_RETRY_MAX_ATTEMPTS
            )
        )

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    @staticmethod
    def generate_raid_id() -> str:
        return f"R{secrets.randbelow(900_000) + 100_000}"

    async def _load(self, session: AsyncSession, raid_id: str) -> Tuple[RaidRow, Raid]:
        RaidRow = self._raid_repo.model_class
        row = await self._raid_repo.find_one_where(session, RaidRow.raid_id == raid_id)
        if row is None:
            raise NotFoundError("Raid", raid_id)
        return row, Raid.from_db(row, max_participants=self.max_participants)

    def _save(self, row: RaidRow, raid: Raid) -> None:
        self._raid_repo.apply_updates(row, raid.to_db_updates())

    async def _versioned(self, operation_name: str, raid_id: str, operation):
        return await self.run_with_version_retry(
            operation,
            operation_name=operation_name,
            resource_type="Raid",
            identifier=raid_id,
            max_attempts=self.retry_attempts,
        )

    def _build_participant(self, raid: Raid, character: Character, now: datetime) -> RaidParticipant:
        """
        Check a character may join and build its participant record.

        Raises:
            InvalidOperationError: KO'd with nobody else seated, wrong village,
                or blight stage 3+
        """
        max_blight = int(self.get_config("raid.max_blight_stage", 3))

        if character.ko and not raid.participants:
            raise InvalidOperationError(
                "join_raid",
                f"{character.name} is KO'd and cannot start a raid alone. "
                "Heal first, or join a raid that already has participants.",
            )
        if (character.current_village or "").lower() != raid.village.lower():
            raise InvalidOperationError(
                "join_raid", "Character must be in the same village as the raid"
            )
        if character.blighted and character.blight_stage >= max_blight:
            raise InvalidOperationError(
                "join_raid",
                f"{character.name} cannot participate in raids at Blight Stage "
                f"{character.blight_stage} - monsters no longer attack them",
            )

        return RaidParticipant(
            user_id=str(character.user_id),
            character_id=character.id,
            name=character.name,
            joined_at=now,
            is_mod_character=character.is_mod_character,
            is_ko=character.ko,
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_raid(self, raid_id: str) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            _, raid = await self._load(session, raid_id)
            return raid_to_dict(raid)

    async def list_active_raids(self) -> List[Dict[str, Any]]:
        RaidRow = self._raid_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._raid_repo.find_many_where(
                session,
                RaidRow.status == RaidStatus.ACTIVE.value,
                order_by=[RaidRow.start_time],
            )
            return [
                raid_to_dict(Raid.from_db(row, max_participants=self.max_participants))
                for row in rows
            ]

    async def get_cooldown_remaining(self) -> int:
        """Seconds left on the global raid cooldown, 0 when a raid may start."""
        return max(0, await RedisService.ttl(RAID_COOLDOWN_KEY))

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def start_raid(
        self,
        village: str,
        monster: Dict[str, Any],
        character_id: Optional[int] = None,
        *,
        thread_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        skip_cooldown: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Start a raid in `village` against `monster`.

        Args:
            village: Rudania, Inariko or Vhintl (any case)
            monster: ``{"name", "tier", "hearts", "image"?}``
            character_id: Initiating character, seated immediately
            skip_cooldown: Moderator override for the global cooldown

        Raises:
            CooldownActiveError: If another raid started within the cooldown
            DomainValidationError: If the village or monster is invalid
            InvalidOperationError: If the initiating character cannot join
        """
        village = normalize_village(village)
        now = now or utc_now()
        hearts = int(monster.get("hearts") or monster.get("max_hearts") or 0)
        monster_state = MonsterState(
            name=monster.get("name", ""),
            tier=int(monster.get("tier") or 0),
            max_hearts=hearts,
            current_hearts=hearts,
            image=monster.get("image"),
        )
        raid = Raid.start(
            self.generate_raid_id(),
            village,
            monster_state,
            now=now,
            max_participants=self.max_participants,
        )

        self.log_operation(
            "start_raid",
            raid_id=raid.raid_id,
            village=village,
            monster=monster_state.name,
            tier=monster_state.tier,
        )

        if not skip_cooldown:
            claimed = await RedisService.set(
                RAID_COOLDOWN_KEY, raid.raid_id, ttl=self.cooldown_seconds, nx=True
            )
            if not claimed:
                raise CooldownActiveError("raid", float(await self.get_cooldown_remaining()))

        RaidRow = self._raid_repo.model_class
        try:
            async with DatabaseService.get_transaction() as session:
                if character_id is not None:
                    character = await self._characters.load(session, character_id)
                    raid.add_participant(self._build_participant(raid, character, now))

                row = RaidRow(
                    raid_id=raid.raid_id,
                    thread_id=thread_id,
                    channel_id=channel_id,
                    **raid.to_db_updates(),
                )
                self._raid_repo.add(session, row)
        except Exception:
            if not skip_cooldown:
                await RedisService.delete(RAID_COOLDOWN_KEY)
            raise

        await self.emit_event(
            "raid.started",
            {
                "raid_id": raid.raid_id,
                "village": village,
                "monster": monster_state.to_dict(),
                "expires_at": raid.expires_at.isoformat(),
                "initiator_character_id": character_id,
            },
        )
        await self.publish_domain_events(raid)

        self.log.info(
            f"Raid started: {raid.raid_id} in {village} vs {monster_state.name}",
            extra={"raid_id": raid.raid_id, "village": village, "tier": monster_state.tier},
        )
        return raid_to_dict(raid)

    async def join_raid(
        self, raid_id: str, character_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Seat a character and rescale monster hearts for the new party size.

        Raises:
            NotFoundError: Raid or character missing
            InvalidOperationError: Raid over or expired, or character ineligible
            RaidParticipantExistsError: User already has a character seated
            RaidFullError: No seats left
        """
        self.log_operation("join_raid", raid_id=raid_id, character_id=character_id)

        async def _attempt() -> Raid:
            moment = now or utc_now()
            async with DatabaseService.get_transaction() as session:
                row, raid = await self._load(session, raid_id)
                if not raid.is_active:
                    raise InvalidOperationError("join_raid", "This raid is no longer active")
                if raid.is_expired(moment):
                    raise InvalidOperationError("join_raid", "This raid has expired")

                character = await self._characters.load(session, character_id)
                raid.add_participant(self._build_participant(raid, character, moment))
                self._save(row, raid)
            return raid

        raid = await self._versioned("raid.join", raid_id, _attempt)
        await self.publish_domain_events(raid)
        return raid_to_dict(raid)

    async def process_turn(
        self,
        raid_id: str,
        character_id: int,
        roll: Optional[int] = None,
        *,
        rng: Optional[random.Random] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Resolve the current participant's attack.

        The roll is made once; every retry replays the same roll against the
        freshly loaded raid.

        Returns:
            Dict with ``roll``, ``adjusted_roll``, ``hearts_lost``,
            ``damage_dealt``, ``message``, ``character_hearts``,
            ``character_ko``, ``monster_defeated``, ``party_wiped``,
            ``turn_advanced``, ``next_character_id`` and the updated ``raid``

        Raises:
            NotYourTurnError: Another participant is up, or the turn was
                already processed
            RaidParticipantNotFoundError: Character is not in the raid
            InvalidOperationError: Raid over or expired, or character KO'd
            ConcurrencyConflictError: Version retries exhausted
        """
        if roll is None:
            roll = (rng or random).randint(
                int(self.get_config("raid.turn_roll.min", 1)),
                int(self.get_config("raid.turn_roll.max", 100)),
            )

        async def _attempt() -> Tuple[Raid, Dict[str, Any]]:
            moment = now or utc_now()
            async with DatabaseService.get_transaction() as session:
                row, raid = await self._load(session, raid_id)
                if not raid.is_active:
                    raise InvalidOperationError("raid_turn", "This raid is no longer active")
                if raid.is_expired(moment):
                    raise InvalidOperationError("raid_turn", "This raid has expired")

                participant = raid.get_participant(character_id)
                current = raid.current_participant()
                character = await self._characters.load(session, character_id, for_update=True)
                is_mod = participant.is_mod_character or character.is_mod_character
                turn_advanced = False

                # Mod characters sit outside the turn order.
                if not is_mod and (
                    not raid.is_current_turn(character_id)
                    or participant.has_taken_action_this_turn
                ):
                    raise NotYourTurnError(
                        character_id, current.character_id if current else None
                    )
                if character.ko:
                    raise InvalidOperationError(
                        "raid_turn",
                        f"{character.name} is KO'd. Heal with a fairy or leave the raid.",
                    )

                if is_mod and self.get_config("raid.mod_one_hit_kill", True):
                    adjusted = roll
                    hearts_lost = 0
                    requested_damage = raid.monster.current_hearts
                    message = f"{character.name} strikes with divine power!"
                else:
                    blight_stage = character.blight_stage if character.blighted else 0
                    adjusted = adjusted_roll(
                        roll, len(raid.participants), raid.monster.tier, blight_stage
                    )
                    outcome = resolve_battle_outcome(adjusted)
                    hearts_lost = outcome.hearts_lost
                    requested_damage = outcome.damage_dealt
                    message = outcome.message

                damage_dealt = raid.monster.take_damage(requested_damage)
                hearts = await self._characters.apply_damage(session, character_id, hearts_lost)
                if hearts["ko"]:
                    raid.mark_participant_ko(character_id)

                raid.update_participant_damage(character_id, damage_dealt, moment)
                participant.has_taken_action_this_turn = True

                if raid.monster.is_defeated:
                    raid.complete(RaidResult.DEFEATED, moment)
                elif raid.all_participants_ko():
                    raid.fail(moment)
                    await self._characters.knock_out(
                        session, [p.character_id for p in raid.participants]
                    )
                elif not is_mod:
                    raid.advance_turn()
                    turn_advanced = True

                self._save(row, raid)

            next_up = raid.current_participant() if raid.is_active else None
            return raid, {
                "roll": roll,
                "adjusted_roll": adjusted,
                "hearts_lost": hearts_lost,
                "damage_dealt": damage_dealt,
                "message": message,
                "character_hearts": hearts["current_hearts"],
                "character_ko": hearts["ko"],
                "monster_hearts": raid.monster.current_hearts,
                "monster_defeated": raid.monster.is_defeated,
                "party_wiped": raid.status is RaidStatus.TIMED_OUT,
                "turn_advanced": turn_advanced,
                "next_character_id": next_up.character_id if next_up else None,
                "next_user_id": next_up.user_id if next_up else None,
            }

        with LogContext(raid_id=raid_id):
            async with RedisService.acquire_lock(
                f"{RAID_LOCK_PREFIX}{raid_id}", operation="raid.process_turn"
            ):
                raid, result = await self._versioned("raid.process_turn", raid_id, _attempt)

        await self.publish_domain_events(raid)
        await self.emit_event(
            "raid.turn_processed",
            {"raid_id": raid_id, "character_id": character_id, **result},
        )
        self.log.info(
            f"Raid turn processed: {raid_id} character={character_id}",
            extra={
                "raid_id": raid_id,
                "character_id": character_id,
                "roll": roll,
                "adjusted_roll": result["adjusted_roll"],
                "damage_dealt": result["damage_dealt"],
                "hearts_lost": result["hearts_lost"],
            },
        )
        return {**result, "raid": raid_to_dict(raid)}

    async def skip_turn(
        self, raid_id: str, expected_character_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Skip the current participant. The second skip removes them without loot.

        ``expected_character_id`` guards the turn timer: when the turn has
        already moved on, nothing is skipped.
        """

        async def _attempt() -> Tuple[Raid, Dict[str, Any]]:
            async with DatabaseService.get_transaction() as session:
                row, raid = await self._load(session, raid_id)
                if not raid.is_active:
                    return raid, {"skipped": False, "reason": "raid_inactive"}

                current = raid.current_participant()
                if current is None:
                    return raid, {"skipped": False, "reason": "no_participants"}
                if expected_character_id is not None and current.character_id != expected_character_id:
                    return raid, {"skipped": False, "reason": "turn_advanced"}

                outcome = raid.skip_current_turn()
                self._save(row, raid)

            skipped = outcome["participant"]
            return raid, {
                "skipped": True,
                "character_id": skipped.character_id,
                "user_id": skipped.user_id,
                "character_name": skipped.name,
                "skip_count": skipped.skip_count,
                "removed": outcome["removed"],
            }

        raid, result = await self._versioned("raid.skip_turn", raid_id, _attempt)
        if result["skipped"]:
            await self.publish_domain_events(raid)
            self.log.info(
                f"Raid turn skipped: {raid_id} character={result['character_id']}",
                extra=safe_extra({"raid_id": raid_id, **result}),
            )
        next_up = raid.current_participant() if raid.is_active else None
        return {
            **result,
            "next_character_id": next_up.character_id if next_up else None,
            "next_user_id": next_up.user_id if next_up else None,
            "raid": raid_to_dict(raid),
        }

    async def leave_raid(self, raid_id: str, character_id: int) -> Dict[str, Any]:
        self.log_operation("leave_raid", raid_id=raid_id, character_id=character_id)

        async def _attempt() -> Tuple[Raid, Dict[str, Any]]:
            async with DatabaseService.get_transaction() as session:
                row, raid = await self._load(session, raid_id)
                if not raid.is_active:
                    raise InvalidOperationError("leave_raid", "This raid is no longer active")
                outcome = raid.remove_participant(character_id, reason="left")
                self._save(row, raid)
            return raid, {"loot_eligible": outcome["loot_eligible"]}

        raid, result = await self._versioned("raid.leave", raid_id, _attempt)
        await self.publish_domain_events(raid)
        return {**result, "raid": raid_to_dict(raid)}

    async def fail_raid(self, raid_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Time the raid out and KO every participant's character.

        Idempotent: failing a finished raid returns ``failed=False``.
        """

        async def _attempt() -> Tuple[Raid, bool]:
            async with DatabaseService.get_transaction() as session:
                row, raid = await self._load(session, raid_id)
                changed = raid.fail(now or utc_now())
                if changed:
                    await self._characters.knock_out(
                        session, [p.character_id for p in raid.participants]
                    )
                    self._save(row, raid)
            return raid, changed

        raid, changed = await self._versioned("raid.fail", raid_id, _attempt)
        if changed:
            await self.publish_domain_events(raid)
            self.log.info(
                f"Raid timed out: {raid_id}",
                extra={"raid_id": raid_id, "participant_count": len(raid.participants)},
            )
        return {"failed": changed, "raid": raid_to_dict(raid)}

    async def restore_participant(self, character_id: int) -> List[str]:
        """
        Give a revived character its turns back in every active raid it sits in.

        Returns the ids of the raids that changed.
        """
        RaidRow = self._raid_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._raid_repo.find_many_where(
                session, RaidRow.status == RaidStatus.ACTIVE.value
            )
            candidates = [
                row.raid_id
                for row in rows
                if any(
                    p.get("character_id") == character_id and p.get("is_ko")
                    for p in (row.participants or [])
                )
            ]

        restored: List[str] = []
        for raid_id in candidates:

            async def _attempt(raid_id: str = raid_id) -> bool:
                async with DatabaseService.get_transaction() as session:
                    row, raid = await self._load(session, raid_id)
                    if not raid.is_active or not raid.has_participant(character_id):
                        return False
                    if not raid.get_participant(character_id).is_ko:
                        return False
                    raid.mark_participant_ko(character_id, ko=False)
                    self._save(row, raid)
                return True

            if await self._versioned("raid.restore_participant", raid_id, _attempt):
                restored.append(raid_id)

        if restored:
            self.log_operation(
                "restore_participant", character_id=character_id, raid_ids=restored
            )
        return restored

    async def cleanup_expired_raids(self, now: Optional[datetime] = None) -> int:
        """Fail every active raid whose expiry has passed; returns how many were failed."""
        now = now or utc_now()
        RaidRow = self._raid_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._raid_repo.find_many_where(
                session,
                RaidRow.status == RaidStatus.ACTIVE.value,
                RaidRow.expires_at < now,
            )
            raid_ids = [row.raid_id for row in rows]

        failed = 0
        for raid_id in raid_ids:
            try:
                result = await self.fail_raid(raid_id, now=now)
            except TinglebotDomainException as exc:
                self.log_error("cleanup_expired_raids", exc, raid_id=raid_id)
                continue
            if result["failed"]:
                failed += 1

        if raid_ids:
            self.log.info(
                f"Expired raid cleanup: {failed}/{len(raid_ids)} failed",
                extra={"expired": len(raid_ids), "failed": failed},
            )
        return failed
