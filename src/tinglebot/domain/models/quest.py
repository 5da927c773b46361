"""
Quest domain model.

Purpose
-------
Tracks each participant's progress through a quest's completion criteria:

    joined (active) -> completed -> rewarded
           |                \\
           +-> failed (left) +-> disqualified (left the quest village)

Completion depends on the quest type:

- RP: enough valid roleplay posts (default 15)
- Art / Writing: an approved submission of the matching kind
- Art / Writing combined: either kind
- Interactive: enough successful table rolls (default 1)

A quest completes on its own when its time limit runs out, or when every
participant has completed.

Domain Events
-------------
- quest.participant_joined
- quest.participant_left
- quest.participant_completed
- quest.participant_disqualified
- quest.completed
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from tinglebot.domain.models.base import (
    AggregateRoot,
    DomainValidationError,
    ensure_aware,
    utc_now,
    validate_not_empty,
)
from tinglebot.domain.models.rp_validation import RPPostValidation, validate_rp_post
from tinglebot.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    QuestTypeMismatchError,
)

DEFAULT_POST_REQUIREMENT = 15
DEFAULT_REQUIRED_ROLLS = 1
NO_REWARD_VALUES = ("N/A", "No reward", "No reward specified", "None")


class QuestType(str, Enum):
    ART = "Art"
    WRITING = "Writing"
    INTERACTIVE = "Interactive"
    RP = "RP"
    ART_WRITING = "Art / Writing"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ParticipantProgress(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REWARDED = "rewarded"
    DISQUALIFIED = "disqualified"


class SubmissionKind(str, Enum):
    ART = "art"
    WRITING = "writing"
    INTERACTIVE = "interactive"
    RP_POSTS = "rp_posts"


class CompletionReason(str, Enum):
    TIME_EXPIRED = "time_expired"
    ALL_PARTICIPANTS_COMPLETED = "all_participants_completed"
    MANUAL = "manual"


# ============================================================================
# PURE HELPERS
# ============================================================================

_TIME_UNITS = (
    ("day", timedelta(days=1)),
    ("week", timedelta(weeks=1)),
    ("month", timedelta(days=30)),
    ("hour", timedelta(hours=1)),
)
_NUMBER = re.compile(r"(\d+)")


def parse_time_limit(text: Optional[str]) -> Optional[timedelta]:
    """
    Turn a human time limit ("2 weeks", "1 month", "48 hours") into a duration.

    Months count as 30 days. A missing number means 1. Returns None when no
    unit is recognized.
    """
    if not text:
        return None

    lowered = text.lower()
    for unit, span in _TIME_UNITS:
        if unit in lowered:
            match = _NUMBER.search(lowered)
            count = int(match.group(1)) if match else 1
            return span * count
    return None


def normalize_token_reward(value: Any) -> float:
    if value is None or value in NO_REWARD_VALUES:
        return 0.0
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    try:
        return max(0.0, float(str(value).strip()))
    except ValueError:
        return 0.0


def parse_multiple_items(item_reward: Optional[str]) -> List[Dict[str, Any]]:
    """
    Parse "Name:qty;Other Name" into ``[{"name", "quantity"}]``.

    Missing or unreadable quantities default to 1.
    """
    if not item_reward or item_reward.strip() in ("", "N/A"):
        return []

    items: List[Dict[str, Any]] = []
    for chunk in item_reward.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        if ":" in chunk:
            name, _, qty = chunk.partition(":")
            try:
                quantity = int(qty.strip())
            except ValueError:
                quantity = 1
            items.append({"name": name.strip(), "quantity": quantity or 1})
        else:
            items.append({"name": chunk, "quantity": 1})
    return items


def evaluate_roll_success(criteria: Optional[str], roll_result: Mapping[str, Any]) -> bool:
    """
    Decide whether a table roll satisfies an interactive quest's criteria.

    Supported forms: ``item:<substring>``, ``rarity:<name>``, ``weight:>n``,
    ``weight:<n`` and ``weight:n``. No criteria, or criteria in any other
    form, count every roll as a success.
    """
    if not criteria:
        return True

    lowered = criteria.strip().lower()
    kind, _, expected = lowered.partition(":")

    if kind == "item":
        item = roll_result.get("item")
        return bool(item) and expected in str(item).lower()

    if kind == "rarity":
        rarity = roll_result.get("rarity")
        return bool(rarity) and str(rarity).lower() == expected

    if kind == "weight":
        weight = roll_result.get("weight")
        if not weight:
            return False
        try:
            if expected.startswith(">"):
                return float(weight) > float(expected[1:])
            if expected.startswith("<"):
                return float(weight) < float(expected[1:])
            return float(weight) == float(expected)
        except ValueError:
            return False

    return True


def _dt_to_json(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_from_json(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(value))


# ============================================================================
# PARTICIPANT
# ============================================================================


@dataclass
class QuestParticipant:
    user_id: str
    character_name: str
    progress: ParticipantProgress = ParticipantProgress.ACTIVE
    joined_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    rewarded_at: Optional[datetime] = None
    tokens_earned: float = 0
    submissions: List[Dict[str, Any]] = field(default_factory=list)
    submission_info: Optional[Dict[str, Any]] = None
    rp_post_count: int = 0
    table_roll_count: int = 0
    successful_rolls: int = 0
    table_roll_results: List[Dict[str, Any]] = field(default_factory=list)
    last_village_check: Optional[datetime] = None
    disqualified_at: Optional[datetime] = None
    disqualification_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.progress is ParticipantProgress.ACTIVE

    def has_approved(self, *kinds: SubmissionKind) -> bool:
        wanted = {kind.value for kind in kinds}
        return any(s.get("type") in wanted and s.get("approved") for s in self.submissions)

    def complete(self, now: Optional[datetime] = None) -> None:
        self.progress = ParticipantProgress.COMPLETED
        self.completed_at = now or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "character_name": self.character_name,
            "progress": self.progress.value,
            "joined_at": _dt_to_json(self.joined_at),
            "completed_at": _dt_to_json(self.completed_at),
            "rewarded_at": _dt_to_json(self.rewarded_at),
            "tokens_earned": self.tokens_earned,
            "submissions": list(self.submissions),
            "submission_info": self.submission_info,
            "rp_post_count": self.rp_post_count,
            "table_roll_count": self.table_roll_count,
            "successful_rolls": self.successful_rolls,
            "table_roll_results": list(self.table_roll_results),
            "last_village_check": _dt_to_json(self.last_village_check),
            "disqualified_at": _dt_to_json(self.disqualified_at),
            "disqualification_reason": self.disqualification_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> QuestParticipant:
        return cls(
            user_id=str(data["user_id"]),
            character_name=data["character_name"],
            progress=ParticipantProgress(data.get("progress", "active")),
            joined_at=_dt_from_json(data.get("joined_at")) or utc_now(),
            completed_at=_dt_from_json(data.get("completed_at")),
            rewarded_at=_dt_from_json(data.get("rewarded_at")),
            tokens_earned=data.get("tokens_earned", 0),
            submissions=list(data.get("submissions") or []),
            submission_info=data.get("submission_info"),
            rp_post_count=int(data.get("rp_post_count", 0)),
            table_roll_count=int(data.get("table_roll_count", 0)),
            successful_rolls=int(data.get("successful_rolls", 0)),
            table_roll_results=list(data.get("table_roll_results") or []),
            last_village_check=_dt_from_json(data.get("last_village_check")),
            disqualified_at=_dt_from_json(data.get("disqualified_at")),
            disqualification_reason=data.get("disqualification_reason"),
        )


# ============================================================================
# QUEST AGGREGATE ROOT
# ============================================================================


class Quest(AggregateRoot):
    """
    Quest aggregate root.

    Participants are keyed by Discord user id. Every mutating method checks
    the quest type where it matters and raises ``QuestTypeMismatchError``
    rather than silently doing nothing.
    """

    def __init__(
        self,
        quest_id: str,
        title: str,
        quest_type: QuestType,
        *,
        status: QuestStatus = QuestStatus.ACTIVE,
        location: Optional[str] = None,
        required_village: Optional[str] = None,
        time_limit: Optional[str] = None,
        posted_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        completion_reason: Optional[str] = None,
        token_reward: Any = 0,
        item_reward: Optional[str] = None,
        post_requirement: Optional[int] = None,
        table_roll_name: Optional[str] = None,
        required_rolls: int = DEFAULT_REQUIRED_ROLLS,
        success_criteria: Optional[str] = None,
        participants: Optional[Dict[str, QuestParticipant]] = None,
        left_participants: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        validate_not_empty(quest_id, "quest_id")
        validate_not_empty(title, "title")
        super().__init__(quest_id)
        self.title = title
        self.quest_type = QuestType(quest_type)
        self.status = QuestStatus(status)
        self.location = location
        self.required_village = required_village
        self.time_limit = time_limit
        self.posted_at = ensure_aware(posted_at)
        self.completed_at = ensure_aware(completed_at)
        self.completion_reason = completion_reason
        self.token_reward = token_reward
        self.item_reward = item_reward
        self.post_requirement = post_requirement
        self.table_roll_name = table_roll_name
        self.required_rolls = required_rolls or DEFAULT_REQUIRED_ROLLS
        self.success_criteria = success_criteria
        self.participants: Dict[str, QuestParticipant] = dict(participants or {})
        self.left_participants: List[Dict[str, Any]] = list(left_participants or [])

    @property
    def quest_id(self) -> str:
        return self.id

    @property
    def is_active(self) -> bool:
        return self.status is QuestStatus.ACTIVE

    @property
    def normalized_token_reward(self) -> float:
        return normalize_token_reward(self.token_reward)

    @property
    def deadline(self) -> Optional[datetime]:
        duration = parse_time_limit(self.time_limit)
        if self.posted_at is None or duration is None:
            return None
        return self.posted_at + duration

    def is_time_expired(self, now: Optional[datetime] = None) -> bool:
        deadline = self.deadline
        return deadline is not None and (now or utc_now()) > deadline

    def _require_type(self, *allowed: QuestType) -> None:
        if self.quest_type not in allowed:
            raise QuestTypeMismatchError(
                self.quest_id, " or ".join(t.value for t in allowed), self.quest_type.value
            )

    def get_participant(self, user_id: str) -> QuestParticipant:
        participant = self.participants.get(str(user_id))
        if participant is None:
            raise NotFoundError("Quest participant", user_id)
        return participant

    # ========================================================================
    # PARTICIPANTS
    # ========================================================================

    def add_participant(
        self, user_id: str, character_name: str, now: Optional[datetime] = None
    ) -> QuestParticipant:
        """Add a participant; joining twice returns the existing record."""
        user_id = str(user_id)
        existing = self.participants.get(user_id)
        if existing is not None:
            return existing
        if not self.is_active:
            raise InvalidOperationError("join_quest", "Quest is no longer active")
        if self.has_character_left(character_name):
            raise InvalidOperationError(
                "join_quest", f"{character_name} already left this quest and cannot rejoin"
            )

        participant = QuestParticipant(
            user_id=user_id,
            character_name=character_name,
            joined_at=now or utc_now(),
            last_village_check=now or utc_now(),
        )
        self.participants[user_id] = participant
        self.add_domain_event(
            "quest.participant_joined",
            {"quest_id": self.quest_id, "user_id": user_id, "character_name": character_name},
        )
        return participant

    def remove_participant(self, user_id: str, now: Optional[datetime] = None) -> QuestParticipant:
        participant = self.get_participant(user_id)
        now = now or utc_now()
        participant.progress = ParticipantProgress.FAILED

        self.left_participants.append(
            {
                "user_id": participant.user_id,
                "character_name": participant.character_name,
                "left_at": now.isoformat(),
            }
        )
        del self.participants[participant.user_id]

        self.add_domain_event(
            "quest.participant_left",
            {
                "quest_id": self.quest_id,
                "user_id": participant.user_id,
                "character_name": participant.character_name,
            },
        )
        return participant

    def has_character_left(self, character_name: str) -> bool:
        wanted = character_name.lower()
        return any(p.get("character_name", "").lower() == wanted for p in self.left_participants)

    def meets_requirements(self, participant: QuestParticipant) -> bool:
        if self.quest_type is QuestType.RP:
            return participant.rp_post_count >= (self.post_requirement or DEFAULT_POST_REQUIREMENT)
        if self.quest_type is QuestType.ART:
            return participant.has_approved(SubmissionKind.ART)
        if self.quest_type is QuestType.WRITING:
            return participant.has_approved(SubmissionKind.WRITING)
        if self.quest_type is QuestType.ART_WRITING:
            return participant.has_approved(SubmissionKind.ART, SubmissionKind.WRITING)
        if self.quest_type is QuestType.INTERACTIVE:
            return participant.successful_rolls >= (self.required_rolls or DEFAULT_REQUIRED_ROLLS)
        return False

    def _complete_participant(self, participant: QuestParticipant, now: datetime) -> None:
        participant.complete(now)
        self.add_domain_event(
            "quest.participant_completed",
            {
                "quest_id": self.quest_id,
                "user_id": participant.user_id,
                "character_name": participant.character_name,
            },
        )

    # ========================================================================
    # SUBMISSIONS (ART / WRITING)
    # ========================================================================

    def record_submission(
        self,
        user_id: str,
        kind: SubmissionKind,
        url: Optional[str] = None,
        approved: bool = False,
        approved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        participant = self.get_participant(user_id)
        now = now or utc_now()
        submission: Dict[str, Any] = {
            "type": SubmissionKind(kind).value,
            "url": url,
            "submitted_at": now.isoformat(),
            "approved": approved,
        }
        if approved:
            submission["approved_by"] = approved_by or "System"
            submission["approved_at"] = now.isoformat()
        if submission["type"] == SubmissionKind.RP_POSTS.value:
            submission["post_count"] = participant.rp_post_count

        participant.submissions.append(submission)
        return submission

    def approve_submission(
        self, user_id: str, url: str, approved_by: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Approve a pending submission by URL and complete the participant if it now qualifies."""
        participant = self.get_participant(user_id)
        now = now or utc_now()
        for submission in participant.submissions:
            if submission.get("url") == url and not submission.get("approved"):
                submission["approved"] = True
                submission["approved_by"] = approved_by
                submission["approved_at"] = now.isoformat()
                if participant.is_active and self.meets_requirements(participant):
                    self._complete_participant(participant, now)
                return submission
        raise NotFoundError("Pending submission", url)

    def complete_from_submission(
        self,
        user_id: str,
        kind: SubmissionKind,
        url: Optional[str] = None,
        approved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record an already-approved art or writing submission and complete
        the participant.

        Returns False when the participant is no longer active.
        """
        kind = SubmissionKind(kind)
        if kind is SubmissionKind.ART:
            self._require_type(QuestType.ART, QuestType.ART_WRITING)
        elif kind is SubmissionKind.WRITING:
            self._require_type(QuestType.WRITING, QuestType.ART_WRITING)
        else:
            raise DomainValidationError("kind", "Only art or writing submissions complete a quest")

        participant = self.get_participant(user_id)
        if not participant.is_active:
            return False

        now = now or utc_now()
        self.record_submission(user_id, kind, url, approved=True, approved_by=approved_by, now=now)
        participant.submission_info = None
        self._complete_participant(participant, now)
        return True

    def link_submission(self, user_id: str, submission_info: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        """Attach pending submission metadata for later approval."""
        self._require_type(QuestType.ART, QuestType.WRITING, QuestType.ART_WRITING)
        participant = self.get_participant(user_id)
        if not participant.is_active:
            return False
        participant.submission_info = {**submission_info, "linked_at": (now or utc_now()).isoformat()}
        return True

    # ========================================================================
    # RP QUESTS
    # ========================================================================

    def record_rp_post(
        self,
        user_id: str,
        content: Optional[str],
        *,
        has_attachments: bool = False,
        has_embeds: bool = False,
    ) -> RPPostValidation:
        """Count a roleplay post if it passes validation."""
        self._require_type(QuestType.RP)
        participant = self.get_participant(user_id)
        if not participant.is_active:
            return RPPostValidation(False, "Participant not active")

        result = validate_rp_post(content, has_attachments=has_attachments, has_embeds=has_embeds)
        if result.valid:
            participant.rp_post_count += 1
        return result

    def check_village(
        self, user_id: str, current_village: Optional[str], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Verify an RP participant is still in the quest village.

        A mismatch disqualifies the participant.
        """
        participant = self.get_participant(user_id)
        if self.quest_type is not QuestType.RP or not self.required_village:
            return {"valid": True, "reason": "No village requirement"}

        now = now or utc_now()
        if current_village is None:
            reason = "Character not found"
        elif current_village.lower() != self.required_village.lower():
            reason = (
                f"Character is in {current_village.lower()}, "
                f"must be in {self.required_village.lower()}"
            )
        else:
            participant.last_village_check = now
            return {"valid": True, "reason": "Village location valid"}

        self.disqualify(user_id, reason, now=now)
        return {"valid": False, "reason": reason}

    def disqualify(self, user_id: str, reason: str, now: Optional[datetime] = None) -> QuestParticipant:
        participant = self.get_participant(user_id)
        participant.progress = ParticipantProgress.DISQUALIFIED
        participant.disqualified_at = now or utc_now()
        participant.disqualification_reason = reason
        self.add_domain_event(
            "quest.participant_disqualified",
            {
                "quest_id": self.quest_id,
                "user_id": participant.user_id,
                "character_name": participant.character_name,
                "reason": reason,
            },
        )
        return participant

    def check_all_villages(
        self,
        village_lookup: Callable[[QuestParticipant], Optional[str]],
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Check every active participant's village.

        ``village_lookup`` returns the character's current village, or None
        if the character no longer exists.
        """
        if self.quest_type is not QuestType.RP or not self.required_village:
            return {"checked": 0, "disqualified": 0}

        checked = disqualified = 0
        for participant in list(self.participants.values()):
            if not participant.is_active:
                continue
            checked += 1
            result = self.check_village(participant.user_id, village_lookup(participant), now=now)
            if not result["valid"]:
                disqualified += 1
        return {"checked": checked, "disqualified": disqualified}

    # ========================================================================
    # INTERACTIVE QUESTS
    # ========================================================================

    def set_table_roll_config(
        self,
        table_roll_name: str,
        required_rolls: int = DEFAULT_REQUIRED_ROLLS,
        success_criteria: Optional[str] = None,
    ) -> None:
        self._require_type(QuestType.INTERACTIVE)
        validate_not_empty(table_roll_name, "table_roll_name")
        self.table_roll_name = table_roll_name
        self.required_rolls = required_rolls or DEFAULT_REQUIRED_ROLLS
        self.success_criteria = success_criteria

    def check_table_roll(self, user_id: str) -> QuestParticipant:
        """Raise unless `user_id` may roll this quest's table right now."""
        self._require_type(QuestType.INTERACTIVE)
        participant = self.get_participant(user_id)
        if not participant.is_active:
            raise InvalidOperationError("quest_roll", "Participant is not active in this quest")
        if not self.table_roll_name:
            raise InvalidOperationError("quest_roll", f"Quest {self.quest_id} has no table roll configured")
        return participant

    def process_table_roll(
        self, user_id: str, roll_result: Mapping[str, Any], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        participant = self.check_table_roll(user_id)

        now = now or utc_now()
        success = evaluate_roll_success(self.success_criteria, roll_result)

        participant.table_roll_count += 1
        if success:
            participant.successful_rolls += 1

        entry = {
            "roll_number": participant.table_roll_count,
            "result": dict(roll_result),
            "rolled_at": now.isoformat(),
            "success": success,
        }
        participant.table_roll_results.append(entry)

        quest_completed = participant.successful_rolls >= self.required_rolls
        if quest_completed:
            self._complete_participant(participant, now)

        return {
            "roll_number": entry["roll_number"],
            "success": success,
            "successful_rolls": participant.successful_rolls,
            "required_rolls": self.required_rolls,
            "quest_completed": quest_completed,
        }

    # ========================================================================
    # COMPLETION & REWARDS
    # ========================================================================

    def complete(self, reason: CompletionReason, now: Optional[datetime] = None) -> None:
        self.status = QuestStatus.COMPLETED
        self.completed_at = now or utc_now()
        self.completion_reason = CompletionReason(reason).value
        self.add_domain_event(
            "quest.completed",
            {
                "quest_id": self.quest_id,
                "title": self.title,
                "reason": self.completion_reason,
                "completed_user_ids": [
                    p.user_id
                    for p in self.participants.values()
                    if p.progress is ParticipantProgress.COMPLETED
                ],
            },
        )

    def check_auto_completion(
        self,
        now: Optional[datetime] = None,
        village_lookup: Optional[Callable[[QuestParticipant], Optional[str]]] = None,
    ) -> Dict[str, Any]:
        """
        Complete participants who qualify and the quest itself when due.

        Returns ``{"completed": bool, "reason": str, "participants_completed": int}``.
        """
        if not self.is_active:
            return {"completed": False, "reason": "Quest not active", "participants_completed": 0}

        now = now or utc_now()
        if self.is_time_expired(now):
            self.complete(CompletionReason.TIME_EXPIRED, now)
            return {
                "completed": True,
                "reason": CompletionReason.TIME_EXPIRED.value,
                "participants_completed": 0,
            }

        if self.quest_type is QuestType.RP and village_lookup is not None:
            self.check_all_villages(village_lookup, now=now)

        completed_now = 0
        for participant in self.participants.values():
            if participant.is_active and self.meets_requirements(participant):
                self._complete_participant(participant, now)
                completed_now += 1

        everyone_done = bool(self.participants) and all(
            p.progress is ParticipantProgress.COMPLETED for p in self.participants.values()
        )
        if everyone_done:
            self.complete(CompletionReason.ALL_PARTICIPANTS_COMPLETED, now)
            return {
                "completed": True,
                "reason": CompletionReason.ALL_PARTICIPANTS_COMPLETED.value,
                "participants_completed": completed_now,
            }

        reason = (
            f"{completed_now} participants completed" if completed_now else "No participants completed"
        )
        return {"completed": False, "reason": reason, "participants_completed": completed_now}

    def mark_rewarded(self, user_id: str, tokens: float, now: Optional[datetime] = None) -> QuestParticipant:
        participant = self.get_participant(user_id)
        if participant.progress is not ParticipantProgress.COMPLETED:
            raise InvalidOperationError(
                "reward_participant",
                f"{participant.character_name} has not completed the quest "
                f"(progress: {participant.progress.value})",
            )
        participant.progress = ParticipantProgress.REWARDED
        participant.rewarded_at = now or utc_now()
        participant.tokens_earned = tokens
        return participant

    # ========================================================================
    # CONVERSION
    # ========================================================================

    @classmethod
    def from_db(cls, row: Any) -> Quest:
        return cls(
            row.quest_id,
            row.title,
            QuestType(row.quest_type),
            status=QuestStatus(row.status),
            location=row.location,
            required_village=row.required_village,
            time_limit=row.time_limit,
            posted_at=row.posted_at,
            completed_at=row.completed_at,
            completion_reason=row.completion_reason,
            token_reward=row.token_reward,
            item_reward=row.item_reward,
            post_requirement=row.post_requirement,
            table_roll_name=row.table_roll_name,
            required_rolls=row.required_rolls,
            success_criteria=row.success_criteria,
            participants={
                user_id: QuestParticipant.from_dict(data)
                for user_id, data in (row.participants or {}).items()
            },
            left_participants=row.left_participants,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "required_village": self.required_village,
            "completed_at": self.completed_at,
            "completion_reason": self.completion_reason,
            "table_roll_name": self.table_roll_name,
            "required_rolls": self.required_rolls,
            "success_criteria": self.success_criteria,
            "participants": {uid: p.to_dict() for uid, p in self.participants.items()},
            "left_participants": list(self.left_participants),
        }
