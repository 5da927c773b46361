"""
Raid domain model.

Purpose
-------
Pure rules for timed raid encounters: party-size scaling of monster hearts,
turn order, damage accounting, loot eligibility and the turn roll table.
Nothing here touches the database; ``RaidService`` loads a row with
``Raid.from_db``, calls these methods inside a versioned transaction and
writes ``to_db_updates()`` back.

Turn Order
----------
Participants act round-robin starting from ``current_turn``. Advancing the
turn skips participants who are KO'd or playing a mod character. If nobody
is eligible the turn still moves to the next seat so the raid never stalls.

Domain Events
-------------
- raid.participant_joined
- raid.participant_removed
- raid.turn_skipped
- raid.completed
- raid.failed
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from tinglebot.domain.models.base import (
    AggregateRoot,
    DomainValidationError,
    ensure_aware,
    utc_now,
    validate_not_empty,
    validate_positive,
)
from tinglebot.modules.shared.exceptions import (
    RaidFullError,
    RaidParticipantExistsError,
    RaidParticipantNotFoundError,
)

VALID_VILLAGES = ("Rudania", "Inariko", "Vhintl")

DEFAULT_MAX_PARTICIPANTS = 10
MAX_ROLL_PENALTY = 15
LOOT_MIN_DAMAGE = 1
LOOT_MIN_ROUNDS = 3
SKIPS_BEFORE_REMOVAL = 2


class RaidStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


class RaidResult(str, Enum):
    DEFEATED = "defeated"
    TIMEOUT = "timeout"


def normalize_village(village: str) -> str:
    """Return the canonical village name, matching case-insensitively."""
    for name in VALID_VILLAGES:
        if name.lower() == (village or "").strip().lower():
            return name
    raise DomainValidationError(
        "village", f"Unknown village '{village}'. Expected one of: {', '.join(VALID_VILLAGES)}"
    )


# ============================================================================
# FORMULAS
# ============================================================================


def calculate_raid_duration(tier: int) -> timedelta:
    """
    Raid length by monster tier.

    Tiers below 5 get 10 minutes, tiers above 10 get 20 minutes and the
    tiers in between scale linearly (2 minutes per tier).
    """
    if tier < 5:
        return timedelta(minutes=10)
    if tier > 10:
        return timedelta(minutes=20)
    return timedelta(minutes=10 + 2 * (tier - 5))


def calculate_scaled_hearts(base_hearts: int, party_size: int) -> int:
    """Parties above 5 add 2 monster hearts per extra member."""
    if party_size <= 5:
        return base_hearts
    return base_hearts + 2 * (party_size - 5)


def calculate_roll_penalty(party_size: int, tier: int) -> float:
    party_penalty = max(0, party_size - 1)
    tier_penalty = max(0.0, (tier - 5) * 0.5)
    return min(MAX_ROLL_PENALTY, party_penalty + tier_penalty)


def adjusted_roll(roll: int, party_size: int, tier: int, blight_stage: int = 0) -> int:
    """
    Apply the raid difficulty penalty to a 1-100 roll.

    The result never drops below 1. Characters at blight stage 2 hit harder:
    their adjusted roll is multiplied by 1.5.
    """
    value = max(1, math.floor(roll - calculate_roll_penalty(party_size, tier)))
    if blight_stage == 2:
        value = math.floor(value * 1.5)
    return value


@dataclass(frozen=True)
class BattleOutcome:
    hearts_lost: int
    damage_dealt: int
    message: str


# (upper bound inclusive, hearts lost, damage dealt, message)
_OUTCOME_TABLE = (
    (9, 5, 0, "The monster lands a crushing blow!"),
    (18, 3, 0, "The monster strikes hard!"),
    (27, 2, 0, "The monster lands a solid hit."),
    (36, 1, 0, "The monster grazes you."),
    (54, 1, 0, "You dodge the first attack but take a glancing hit."),
    (63, 0, 0, "You and the monster both dodge."),
    (72, 0, 1, "You dodge and counter for a heart!"),
    (81, 0, 1, "You strike the monster!"),
    (90, 0, 2, "A strong hit!"),
)


def resolve_battle_outcome(adjusted: int) -> BattleOutcome:
    for upper, hearts_lost, damage, message in _OUTCOME_TABLE:
        if adjusted <= upper:
            return BattleOutcome(hearts_lost=hearts_lost, damage_dealt=damage, message=message)
    return BattleOutcome(hearts_lost=0, damage_dealt=3, message="A devastating strike!")


# ============================================================================
# VALUE OBJECTS
# ============================================================================


def _dt_to_json(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_from_json(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(value))


@dataclass
class MonsterState:
    """Monster hearts. ``base_hearts`` is the unscaled maximum."""

    name: str
    tier: int
    max_hearts: int
    current_hearts: int
    base_hearts: int = 0
    image: Optional[str] = None

    def __post_init__(self) -> None:
        validate_not_empty(self.name, "monster.name")
        validate_positive(self.tier, "monster.tier")
        validate_positive(self.max_hearts, "monster.max_hearts")
        if self.base_hearts <= 0:
            self.base_hearts = self.max_hearts
        self.current_hearts = max(0, min(self.current_hearts, self.max_hearts))

    @property
    def is_defeated(self) -> bool:
        return self.current_hearts <= 0

    def take_damage(self, amount: int) -> int:
        """Reduce hearts, never below zero; returns hearts actually removed."""
        dealt = min(max(0, amount), self.current_hearts)
        self.current_hearts -= dealt
        return dealt

    def rescale(self, party_size: int) -> None:
        """Recompute max hearts for the party size, keeping damage already dealt."""
        damage_dealt = max(0, self.max_hearts - self.current_hearts)
        new_max = calculate_scaled_hearts(self.base_hearts, party_size)
        self.max_hearts = new_max
        self.current_hearts = max(0, min(new_max, new_max - damage_dealt))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tier": self.tier,
            "max_hearts": self.max_hearts,
            "current_hearts": self.current_hearts,
            "base_hearts": self.base_hearts,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MonsterState:
        max_hearts = int(data.get("max_hearts") or 1)
        return cls(
            name=data["name"],
            tier=int(data.get("tier", 1)),
            max_hearts=max_hearts,
            current_hearts=int(data.get("current_hearts", max_hearts)),
            base_hearts=int(data.get("base_hearts") or 0),
            image=data.get("image"),
        )


@dataclass
class RaidParticipant:
    user_id: str
    character_id: int
    name: str
    damage: int = 0
    rounds_participated: int = 0
    skip_count: int = 0
    joined_at: datetime = field(default_factory=utc_now)
    last_action_at: Optional[datetime] = None
    is_mod_character: bool = False
    is_ko: bool = False
    has_taken_action_this_turn: bool = False

    @property
    def is_loot_eligible(self) -> bool:
        return self.damage >= LOOT_MIN_DAMAGE or self.rounds_participated >= LOOT_MIN_ROUNDS

    @property
    def takes_turns(self) -> bool:
        return not (self.is_ko or self.is_mod_character)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "character_id": self.character_id,
            "name": self.name,
            "damage": self.damage,
            "rounds_participated": self.rounds_participated,
            "skip_count": self.skip_count,
            "joined_at": _dt_to_json(self.joined_at),
            "last_action_at": _dt_to_json(self.last_action_at),
            "is_mod_character": self.is_mod_character,
            "is_ko": self.is_ko,
            "has_taken_action_this_turn": self.has_taken_action_this_turn,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RaidParticipant:
        return cls(
            user_id=str(data["user_id"]),
            character_id=int(data["character_id"]),
            name=data["name"],
            damage=int(data.get("damage", 0)),
            rounds_participated=int(data.get("rounds_participated", 0)),
            skip_count=int(data.get("skip_count", 0)),
            joined_at=_dt_from_json(data.get("joined_at")) or utc_now(),
            last_action_at=_dt_from_json(data.get("last_action_at")),
            is_mod_character=bool(data.get("is_mod_character", False)),
            is_ko=bool(data.get("is_ko", False)),
            has_taken_action_this_turn=bool(data.get("has_taken_action_this_turn", False)),
        )


# ============================================================================
# RAID AGGREGATE ROOT
# ============================================================================


class Raid(AggregateRoot):
    """
    Raid aggregate root.

    Business Rules
    --------------
    - One character per user
    - At most ``max_participants`` seats; mod characters may always join
    - Removing a participant keeps ``current_turn`` pointing at the same
      next person
    - Participants who leave with 1+ damage or 3+ rounds keep loot rights;
      participants removed for skipping do not
    - ``fail()`` is idempotent
    """

    def __init__(
        self,
        raid_id: str,
        village: str,
        monster: MonsterState,
        *,
        participants: Optional[List[RaidParticipant]] = None,
        current_turn: int = 0,
        status: RaidStatus = RaidStatus.ACTIVE,
        result: Optional[RaidResult] = None,
        start_time: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        loot_eligible_removed: Optional[List[Dict[str, Any]]] = None,
        analytics: Optional[Dict[str, Any]] = None,
        max_participants: int = DEFAULT_MAX_PARTICIPANTS,
    ) -> None:
        super().__init__(raid_id)
        self.village = normalize_village(village)
        self.monster = monster
        self.participants: List[RaidParticipant] = list(participants or [])
        self.current_turn = current_turn
        self.status = RaidStatus(status)
        self.result = RaidResult(result) if result else None
        self.start_time = ensure_aware(start_time) or utc_now()
        self.expires_at = ensure_aware(expires_at) or (
            self.start_time + calculate_raid_duration(monster.tier)
        )
        self.end_time = ensure_aware(end_time)
        self.loot_eligible_removed: List[Dict[str, Any]] = list(loot_eligible_removed or [])
        self.analytics: Dict[str, Any] = dict(analytics or {})
        self.max_participants = max_participants

        self.analytics.setdefault("total_damage", 0)
        self.analytics.setdefault("monster_tier", monster.tier)
        self.analytics.setdefault("village", self.village)
        self.analytics.setdefault("success", False)
        self.analytics.setdefault("base_monster_hearts", monster.base_hearts)
        self._refresh_participant_analytics()

    @classmethod
    def start(
        cls,
        raid_id: str,
        village: str,
        monster: MonsterState,
        now: Optional[datetime] = None,
        max_participants: int = DEFAULT_MAX_PARTICIPANTS,
    ) -> Raid:
        now = now or utc_now()
        return cls(
            raid_id,
            village,
            monster,
            start_time=now,
            expires_at=now + calculate_raid_duration(monster.tier),
            max_participants=max_participants,
        )

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def raid_id(self) -> str:
        return self.id

    @property
    def is_active(self) -> bool:
        return self.status is RaidStatus.ACTIVE

    @property
    def duration(self) -> timedelta:
        return self.expires_at - self.start_time

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def _index_of(self, character_id: int) -> int:
        for index, participant in enumerate(self.participants):
            if participant.character_id == character_id:
                return index
        raise RaidParticipantNotFoundError(character_id)

    def get_participant(self, character_id: int) -> RaidParticipant:
        return self.participants[self._index_of(character_id)]

    def has_participant(self, character_id: int) -> bool:
        return any(p.character_id == character_id for p in self.participants)

    def current_participant(self) -> Optional[RaidParticipant]:
        if not self.participants:
            return None
        return self.participants[self.current_turn % len(self.participants)]

    def is_current_turn(self, character_id: int) -> bool:
        current = self.current_participant()
        return current is not None and current.character_id == character_id

    # ========================================================================
    # PARTICIPANTS
    # ========================================================================

    def add_participant(self, participant: RaidParticipant) -> None:
        """
        Seat a participant and rescale the monster for the new party size.

        Raises
        ------
        RaidParticipantExistsError
            If the user already has a character in this raid
        RaidFullError
            If the raid is full and the character is not a mod character
        """
        if any(p.user_id == participant.user_id for p in self.participants):
            raise RaidParticipantExistsError(participant.user_id)
        if not participant.is_mod_character and len(self.participants) >= self.max_participants:
            raise RaidFullError(self.max_participants)

        self.participants.append(participant)
        self.rescale_monster()
        self._refresh_participant_analytics()

        self.add_domain_event(
            "raid.participant_joined",
            {
                "raid_id": self.raid_id,
                "user_id": participant.user_id,
                "character_id": participant.character_id,
                "character_name": participant.name,
                "participant_count": len(self.participants),
                "monster_max_hearts": self.monster.max_hearts,
            },
        )

    def update_participant_damage(
        self, character_id: int, damage: int, now: Optional[datetime] = None
    ) -> RaidParticipant:
        participant = self.get_participant(character_id)
        participant.damage += damage
        participant.rounds_participated += 1
        participant.last_action_at = now or utc_now()

        self.analytics["total_damage"] = int(self.analytics.get("total_damage", 0)) + damage
        self._refresh_participant_analytics()
        return participant

    def remove_participant(
        self,
        character_id: int,
        reason: str = "left",
        keep_loot_rights: bool = True,
    ) -> Dict[str, Any]:
        """
        Remove a participant and fix up ``current_turn``.

        Returns a summary with ``loot_eligible`` and the new current turn.
        """
        index = self._index_of(character_id)
        participant = self.participants.pop(index)

        loot_eligible = keep_loot_rights and participant.is_loot_eligible
        if loot_eligible:
            self.loot_eligible_removed.append(
                {
                    "character_id": participant.character_id,
                    "user_id": participant.user_id,
                    "name": participant.name,
                    "damage": participant.damage,
                }
            )

        if not self.participants:
            self.current_turn = 0
        elif index < self.current_turn:
            self.current_turn = max(0, self.current_turn - 1)
        elif index == self.current_turn:
            self.current_turn = self.current_turn % len(self.participants)

        if self.participants:
            self.rescale_monster()
        self._refresh_participant_analytics()

        self.add_domain_event(
            "raid.participant_removed",
            {
                "raid_id": self.raid_id,
                "character_id": participant.character_id,
                "user_id": participant.user_id,
                "reason": reason,
                "loot_eligible": loot_eligible,
            },
        )
        return {
            "participant": participant,
            "removed_index": index,
            "loot_eligible": loot_eligible,
            "current_turn": self.current_turn,
        }

    def mark_participant_ko(self, character_id: int, ko: bool = True) -> None:
        self.get_participant(character_id).is_ko = ko

    def rescale_monster(self) -> None:
        self.monster.rescale(len(self.participants))
        self.analytics["base_monster_hearts"] = self.monster.base_hearts

    def all_participants_ko(self) -> bool:
        non_mod = [p for p in self.participants if not p.is_mod_character]
        return bool(non_mod) and all(p.is_ko for p in non_mod)

    # ========================================================================
    # TURN ORDER
    # ========================================================================

    def advance_turn(self) -> Optional[RaidParticipant]:
        """Move to the next participant who can take a turn."""
        count = len(self.participants)
        if count == 0:
            self.current_turn = 0
            return None

        next_turn = self.current_turn
        for _ in range(count):
            next_turn = (next_turn + 1) % count
            if self.participants[next_turn].takes_turns:
                break
        else:
            next_turn = (self.current_turn + 1) % count

        self.current_turn = next_turn
        current = self.participants[next_turn]
        current.has_taken_action_this_turn = False
        return current

    def skip_current_turn(self) -> Dict[str, Any]:
        """
        Skip the current participant for not acting in time.

        The second skip removes the participant without loot rights.
        """
        participant = self.current_participant()
        if participant is None:
            return {"participant": None, "removed": False, "current_turn": 0}

        participant.skip_count += 1
        removed = participant.skip_count >= SKIPS_BEFORE_REMOVAL

        if removed:
            self.remove_participant(
                participant.character_id, reason="skipped", keep_loot_rights=False
            )
            next_up = self.current_participant()
            if next_up is not None:
                next_up.has_taken_action_this_turn = False
        else:
            self.advance_turn()

        self.add_domain_event(
            "raid.turn_skipped",
            {
                "raid_id": self.raid_id,
                "character_id": participant.character_id,
                "skip_count": participant.skip_count,
                "removed": removed,
            },
        )
        return {
            "participant": participant,
            "removed": removed,
            "current_turn": self.current_turn,
        }

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def complete(self, result: RaidResult = RaidResult.DEFEATED, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        self.status = RaidStatus.COMPLETED
        self.result = RaidResult(result)
        self.end_time = now
        self.analytics["success"] = self.result is RaidResult.DEFEATED
        self.analytics["end_time"] = now.isoformat()
        self.analytics["duration_seconds"] = (now - self.start_time).total_seconds()

        self.add_domain_event(
            "raid.completed",
            {
                "raid_id": self.raid_id,
                "village": self.village,
                "monster": self.monster.name,
                "result": self.result.value,
                "success": self.analytics["success"],
                "participants": [p.to_dict() for p in self.participants],
                "loot_eligible_removed": list(self.loot_eligible_removed),
            },
        )

    def fail(self, now: Optional[datetime] = None) -> bool:
        """
        Time the raid out and KO every participant.

        Returns False (and changes nothing) if the raid is no longer active.
        """
        if not self.is_active:
            return False

        now = now or utc_now()
        self.status = RaidStatus.TIMED_OUT
        self.result = RaidResult.TIMEOUT
        self.end_time = now
        self.analytics["success"] = False
        self.analytics["end_time"] = now.isoformat()
        self.analytics["duration_seconds"] = (now - self.start_time).total_seconds()

        for participant in self.participants:
            participant.is_ko = True

        self.add_domain_event(
            "raid.failed",
            {
                "raid_id": self.raid_id,
                "village": self.village,
                "monster": self.monster.name,
                "ko_characters": [
                    {"character_id": p.character_id, "hearts": 0} for p in self.participants
                ],
            },
        )
        return True

    def _refresh_participant_analytics(self) -> None:
        count = len(self.participants)
        total = int(self.analytics.get("total_damage", 0))
        self.analytics["participant_count"] = count
        self.analytics["average_damage_per_participant"] = (total / count) if count else 0

    # ========================================================================
    # CONVERSION
    # ========================================================================

    @classmethod
    def from_db(cls, row: Any, max_participants: int = DEFAULT_MAX_PARTICIPANTS) -> Raid:
        """Build the aggregate from a ``tinglebot.database.models.Raid`` row."""
        return cls(
            row.raid_id,
            row.village,
            MonsterState.from_dict(row.monster),
            participants=[RaidParticipant.from_dict(p) for p in (row.participants or [])],
            current_turn=row.current_turn or 0,
            status=RaidStatus(row.status),
            result=RaidResult(row.result) if row.result else None,
            start_time=row.start_time,
            expires_at=row.expires_at,
            end_time=row.end_time,
            loot_eligible_removed=row.loot_eligible_removed,
            analytics=row.analytics,
            max_participants=max_participants,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "village": self.village,
            "monster": self.monster.to_dict(),
            "participants": [p.to_dict() for p in self.participants],
            "current_turn": self.current_turn,
            "status": self.status.value,
            "result": self.result.value if self.result else None,
            "start_time": self.start_time,
            "expires_at": self.expires_at,
            "end_time": self.end_time,
            "duration_seconds": int(self.duration.total_seconds()),
            "loot_eligible_removed": list(self.loot_eligible_removed),
            "analytics": dict(self.analytics),
        }
