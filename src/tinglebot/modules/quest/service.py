"""
Quest Service
=============

Purpose
-------
Runs community quests: posting them, joining and leaving, art/writing
submissions, RP post counting, table-roll interactive quests, village
checks, auto-completion and token rewards.

Domain
------
- Participants are keyed by Discord user id, one character each
- A character who left a quest cannot rejoin it
- RP quests count valid posts and disqualify participants who leave the
  quest village
- Interactive quests complete after the required number of successful rolls
- A quest completes when its time limit passes or every participant has
  completed
- Rewards are paid once per completed participant

Every write reloads the quest in a fresh transaction and retries on a
version conflict.
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from tinglebot.core.database.service import DatabaseService
from tinglebot.core.logging.logger import get_logger, safe_extra
from tinglebot.domain.models.base import utc_now
from tinglebot.domain.models.quest import (
    DEFAULT_POST_REQUIREMENT,
    DEFAULT_REQUIRED_ROLLS,
    CompletionReason,
    Quest,
    QuestParticipant,
    QuestStatus,
    QuestType,
    SubmissionKind,
    parse_multiple_items,
)
from tinglebot.domain.models.raid import normalize_village
from tinglebot.modules.shared.base_repository import BaseRepository
from tinglebot.modules.shared.base_service import BaseService
from tinglebot.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    TinglebotDomainException,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.database.models.progression.quest import Quest as QuestRow
    from tinglebot.modules.character.service import CharacterService
    from tinglebot.modules.leveling.service import LevelingService
    from tinglebot.modules.tableroll.service import TableRollService

R = TypeVar("R")


class QuestRepository(BaseRepository["QuestRow"]):
    """Repository for Quest model."""

    pass


def quest_to_dict(quest: Quest) -> Dict[str, Any]:
    return {
        "quest_id": quest.quest_id,
        "title": quest.title,
        "quest_type": quest.quest_type.value,
        "status": quest.status.value,
        "location": quest.location,
        "required_village": quest.required_village,
        "time_limit": quest.time_limit,
        "posted_at": quest.posted_at,
        "deadline": quest.deadline,
        "completed_at": quest.completed_at,
        "completion_reason": quest.completion_reason,
        "token_reward": quest.normalized_token_reward,
        "item_reward": quest.item_reward,
        "post_requirement": quest.post_requirement,
        "table_roll_name": quest.table_roll_name,
        "required_rolls": quest.required_rolls,
        "success_criteria": quest.success_criteria,
        "participants": {uid: p.to_dict() for uid, p in quest.participants.items()},
        "left_participants": list(quest.left_participants),
    }


class QuestService(BaseService):
    """
    Service for quest participation and completion.

    Public Methods
    --------------
    - create_quest() -> Post a quest
    - get_quest() / list_active_quests() -> Read quests
    - join_quest() / leave_quest() -> Participation
    - submit() -> Record a pending art/writing submission
    - approve_submission() -> Approve it and complete the participant
    - record_rp_post() -> Count an RP post
    - configure_table_roll() -> Attach a table to an interactive quest
    - roll_for_quest() -> Roll the quest table for a participant
    - check_village_locations() -> Disqualify RP participants who left the village
    - run_auto_completion() -> Complete due quests and qualifying participants
    - reward_participant() -> Pay a completed participant
    - disqualify() -> Remove a participant from contention
    - complete_quest() -> Close a quest by hand
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        character_service: CharacterService,
        table_roll_service: TableRollService,
        leveling_service: LevelingService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)

        from tinglebot.database.models.progression.quest import Quest as QuestRow

        self._quest_repo = QuestRepository(
            model_class=QuestRow,
            logger=get_logger(f"{__name__}.QuestRepository"),
        )
        self._characters = character_service
        self._table_rolls = table_roll_service
        self._leveling = leveling_service

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    @staticmethod
    def generate_quest_id() -> str:
        return f"Q{secrets.randbelow(900_000) + 100_000}"

    async def _load(self, session: AsyncSession, quest_id: str) -> Tuple[QuestRow, Quest]:
        QuestRow = self._quest_repo.model_class
        row = await self._quest_repo.find_one_where(session, QuestRow.quest_id == quest_id)
        if row is None:
            raise NotFoundError("Quest", quest_id)
        return row, Quest.from_db(row)

    async def _mutate(
        self,
        operation_name: str,
        quest_id: str,
        mutate: Callable[[AsyncSession, Quest], Awaitable[R]],
    ) -> Tuple[Quest, R]:
        """
        Load, mutate and save a quest under the version retry, then publish
        the quest's domain events.
        """

        async def _attempt() -> Tuple[Quest, R]:
            async with DatabaseService.get_transaction() as session:
                row, quest = await self._load(session, quest_id)
                result = await mutate(session, quest)
                self._quest_repo.apply_updates(row, quest.to_db_updates())
            return quest, result

        quest, result = await self.run_with_version_retry(
            _attempt,
            operation_name=operation_name,
            resource_type="Quest",
            identifier=quest_id,
        )
        await self.publish_domain_events(quest)
        return quest, result

    async def _village_lookup(
        self, quest: Quest
    ) -> Callable[[QuestParticipant], Optional[str]]:
        villages = await self._characters.get_current_villages(
            p.character_name for p in quest.participants.values()
        )
        return lambda participant: villages.get(participant.character_name.lower())

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_quest(self, quest_id: str) -> Dict[str, Any]:
        async with DatabaseService.get_session() as session:
            _, quest = await self._load(session, quest_id)
            return quest_to_dict(quest)

    async def list_active_quests(self) -> List[Dict[str, Any]]:
        QuestRow = self._quest_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._quest_repo.find_many_where(
                session,
                QuestRow.status == QuestStatus.ACTIVE.value,
                order_by=[QuestRow.posted_at],
            )
            return [quest_to_dict(Quest.from_db(row)) for row in rows]

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_quest(
        self,
        title: str,
        quest_type: str,
        *,
        quest_id: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        required_village: Optional[str] = None,
        time_limit: Optional[str] = None,
        token_reward: Any = None,
        item_reward: Optional[str] = None,
        item_reward_qty: Optional[int] = None,
        post_requirement: Optional[int] = None,
        table_roll_name: Optional[str] = None,
        required_rolls: Optional[int] = None,
        success_criteria: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Post a new quest.

        RP quests default to ``quest.default_post_requirement`` posts;
        interactive quests default to ``quest.default_required_rolls``.

        Raises:
            ValidationError: Blank title, unknown type or duplicate id
            DomainValidationError: Unknown required village
        """
        title = self.validate_non_empty(title, "title")
        try:
            kind = QuestType(quest_type)
        except ValueError as exc:
            raise ValidationError(
                "quest_type",
                f"Unknown quest type '{quest_type}'. Expected one of: "
                + ", ".join(t.value for t in QuestType),
            ) from exc

        if required_village:
            required_village = normalize_village(required_village)
        if kind is QuestType.RP and post_requirement is None:
            post_requirement = int(
                self.get_config("quest.default_post_requirement", DEFAULT_POST_REQUIREMENT)
            )
        if kind is QuestType.INTERACTIVE and required_rolls is None:
            required_rolls = int(
                self.get_config("quest.default_required_rolls", DEFAULT_REQUIRED_ROLLS)
            )

        quest = Quest(
            quest_id or self.generate_quest_id(),
            title,
            kind,
            location=location,
            required_village=required_village,
            time_limit=time_limit,
            posted_at=now or utc_now(),
            token_reward=token_reward,
            item_reward=item_reward,
            post_requirement=post_requirement,
            table_roll_name=table_roll_name,
            required_rolls=required_rolls or DEFAULT_REQUIRED_ROLLS,
            success_criteria=success_criteria,
        )
        self.log_operation("create_quest", quest_id=quest.quest_id, quest_type=kind.value)

        QuestRow = self._quest_repo.model_class
        async with DatabaseService.get_transaction() as session:
            if await self._quest_repo.exists(session, QuestRow.quest_id == quest.quest_id):
                raise ValidationError("quest_id", f"Quest {quest.quest_id} already exists")
            row = QuestRow(
                quest_id=quest.quest_id,
                title=quest.title,
                description=description,
                quest_type=kind.value,
                location=location,
                time_limit=time_limit,
                posted_at=quest.posted_at,
                token_reward=None if token_reward is None else str(token_reward),
                item_reward=item_reward,
                item_reward_qty=item_reward_qty,
                items=parse_multiple_items(item_reward),
                post_requirement=post_requirement,
                **quest.to_db_updates(),
            )
            self._quest_repo.add(session, row)

        await self.emit_event(
            "quest.created",
            {"quest_id": quest.quest_id, "title": quest.title, "quest_type": kind.value},
        )
        return quest_to_dict(quest)

    async def join_quest(
        self, quest_id: str, user_id: str, character_name: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Join with one of the user's characters.

        RP quests with a required village only accept characters already
        in that village.

        Raises:
            NotFoundError: Unknown quest, or the user owns no such character
            InvalidOperationError: Quest over, wrong village, or the character left before
        """
        character = await self._characters.get_character_by_name(character_name, user_id=user_id)

        async def _join(session: AsyncSession, quest: Quest) -> QuestParticipant:
            if (
                quest.quest_type is QuestType.RP
                and quest.required_village
                and (character["current_village"] or "").lower() != quest.required_village.lower()
            ):
                raise InvalidOperationError(
                    "join_quest",
                    f"{character['name']} must be in {quest.required_village} to join this quest",
                )
            return quest.add_participant(user_id, character["name"], now)

        quest, participant = await self._mutate("quest.join", quest_id, _join)
        self.log.info(
            f"Quest joined: {quest_id} by {participant.character_name}",
            extra={"quest_id": quest_id, "user_id": str(user_id)},
        )
        return {"participant": participant.to_dict(), "quest": quest_to_dict(quest)}

    async def leave_quest(self, quest_id: str, user_id: str) -> Dict[str, Any]:
        async def _leave(session: AsyncSession, quest: Quest) -> QuestParticipant:
            return quest.remove_participant(user_id)

        quest, participant = await self._mutate("quest.leave", quest_id, _leave)
        return {"participant": participant.to_dict(), "quest": quest_to_dict(quest)}

    async def submit(
        self, quest_id: str, user_id: str, kind: str, url: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Record a pending art or writing submission awaiting approval."""
        url = self.validate_non_empty(url, "url")
        submission_kind = SubmissionKind(kind)

        async def _submit(session: AsyncSession, quest: Quest) -> Dict[str, Any]:
            if not quest.is_active:
                raise InvalidOperationError("quest_submit", "Quest is no longer active")
            if not quest.link_submission(user_id, {"type": submission_kind.value, "url": url}, now):
                raise InvalidOperationError("quest_submit", "Participant is not active in this quest")
            return quest.record_submission(user_id, submission_kind, url, now=now)

        _, submission = await self._mutate("quest.submit", quest_id, _submit)
        await self.emit_event(
            "quest.submission_received",
            {"quest_id": quest_id, "user_id": str(user_id), "type": submission_kind.value, "url": url},
        )
        return submission

    async def approve_submission(
        self, quest_id: str, user_id: str, url: str, approved_by: str
    ) -> Dict[str, Any]:
        async def _approve(session: AsyncSession, quest: Quest) -> Dict[str, Any]:
            submission = quest.approve_submission(user_id, url, approved_by)
            return {
                "submission": submission,
                "progress": quest.get_participant(user_id).progress.value,
            }

        _, result = await self._mutate("quest.approve_submission", quest_id, _approve)
        self.log_operation(
            "approve_submission", quest_id=quest_id, user_id=str(user_id), approved_by=approved_by
        )
        return result

    async def record_rp_post(
        self,
        quest_id: str,
        user_id: str,
        content: Optional[str],
        *,
        has_attachments: bool = False,
        has_embeds: bool = False,
    ) -> Dict[str, Any]:
        """
        Count a post in an RP quest thread.

        Returns ``{"valid", "reason", "post_count", "post_requirement",
        "requirement_met"}``.
        """

        async def _post(session: AsyncSession, quest: Quest) -> Dict[str, Any]:
            validation = quest.record_rp_post(
                user_id, content, has_attachments=has_attachments, has_embeds=has_embeds
            )
            participant = quest.get_participant(user_id)
            return {
                "valid": validation.valid,
                "reason": validation.reason,
                "post_count": participant.rp_post_count,
                "post_requirement": quest.post_requirement or DEFAULT_POST_REQUIREMENT,
                "requirement_met": quest.meets_requirements(participant),
            }

        _, result = await self._mutate("quest.record_rp_post", quest_id, _post)
        return result

    async def configure_table_roll(
        self,
        quest_id: str,
        table_name: str,
        required_rolls: int = DEFAULT_REQUIRED_ROLLS,
        success_criteria: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Attach an existing table to an interactive quest."""
        self.validate_positive_int(required_rolls, "required_rolls")
        table = await self._table_rolls.get_table(table_name)

        async def _configure(session: AsyncSession, quest: Quest) -> None:
            quest.set_table_roll_config(table["name"], required_rolls, success_criteria)

        quest, _ = await self._mutate("quest.configure_table_roll", quest_id, _configure)
        return quest_to_dict(quest)

    async def roll_for_quest(
        self,
        quest_id: str,
        user_id: str,
        *,
        rng: Optional[random.Random] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Roll the quest's table for a participant and score the result.

        The table's roll counters are written in the quest's transaction, so a
        rejected roll never uses up the table's daily cap.

        Raises:
            QuestTypeMismatchError: Not an interactive quest
            InvalidOperationError: No table configured or participant inactive
        """
        rng = rng or random.Random()
        state = rng.getstate()

        async def _score(session: AsyncSession, fresh: Quest) -> Dict[str, Any]:
            fresh.check_table_roll(user_id)
            rng.setstate(state)
            roll = await self._table_rolls.roll_in_session(
                session, fresh.table_roll_name, rng=rng, today=now.date() if now else None
            )
            return {**fresh.process_table_roll(user_id, roll, now), "roll": roll}

        _, outcome = await self._mutate("quest.roll", quest_id, _score)
        await self._table_rolls.announce_roll(outcome["roll"])
        return outcome

    async def check_village_locations(
        self, quest_id: str, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        async with DatabaseService.get_session() as session:
            _, snapshot = await self._load(session, quest_id)
        lookup = await self._village_lookup(snapshot)

        async def _check(session: AsyncSession, quest: Quest) -> Dict[str, int]:
            return quest.check_all_villages(lookup, now=now)

        _, result = await self._mutate("quest.check_villages", quest_id, _check)
        if result["disqualified"]:
            self.log.info(
                f"Village check disqualified {result['disqualified']} participant(s) in {quest_id}",
                extra=safe_extra({"quest_id": quest_id, **result}),
            )
        return result

    async def run_auto_completion(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Sweep every active quest: village checks, participant completion and
        quest completion.

        A failure on one quest is logged and does not stop the sweep.
        """
        now = now or utc_now()
        QuestRow = self._quest_repo.model_class
        async with DatabaseService.get_session() as session:
            rows = await self._quest_repo.find_many_where(
                session, QuestRow.status == QuestStatus.ACTIVE.value
            )
            snapshots = [Quest.from_db(row) for row in rows]

        summary = {"checked": 0, "completed": 0, "participants_completed": 0, "errors": 0}
        for snapshot in snapshots:
            summary["checked"] += 1
            lookup = (
                await self._village_lookup(snapshot)
                if snapshot.quest_type is QuestType.RP and snapshot.required_village
                else None
            )

            async def _auto(session: AsyncSession, quest: Quest, lookup=lookup) -> Dict[str, Any]:
                return quest.check_auto_completion(now, village_lookup=lookup)

            try:
                _, result = await self._mutate("quest.auto_complete", snapshot.quest_id, _auto)
            except TinglebotDomainException as exc:
                summary["errors"] += 1
                self.log_error("run_auto_completion", exc, quest_id=snapshot.quest_id)
                continue

            summary["participants_completed"] += result["participants_completed"]
            if result["completed"]:
                summary["completed"] += 1
                self.log.info(
                    f"Quest auto-completed: {snapshot.quest_id} ({result['reason']})",
                    extra={"quest_id": snapshot.quest_id, "reason": result["reason"]},
                )
        return summary

    async def reward_participant(
        self,
        quest_id: str,
        user_id: str,
        tokens: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Pay a completed participant the quest's token reward (or ``tokens``).

        The reward and the participant's ``rewarded`` state are written in
        one transaction.

        Raises:
            InvalidOperationError: Participant has not completed, or was already rewarded
        """

        async def _reward(session: AsyncSession, quest: Quest) -> Dict[str, Any]:
            amount = int(tokens if tokens is not None else quest.normalized_token_reward)
            participant = quest.mark_rewarded(user_id, amount, now)
            balance = await self._leveling.add_tokens(
                session, user_id, amount, reason=f"quest:{quest.quest_id}"
            )
            return {
                "user_id": participant.user_id,
                "character_name": participant.character_name,
                "tokens": amount,
                "item_reward": quest.item_reward,
                "new_token_balance": balance,
            }

        _, result = await self._mutate("quest.reward", quest_id, _reward)
        await self.emit_event("quest.participant_rewarded", {"quest_id": quest_id, **result})
        return result

    async def disqualify(self, quest_id: str, user_id: str, reason: str) -> Dict[str, Any]:
        reason = self.validate_non_empty(reason, "reason")

        async def _disqualify(session: AsyncSession, quest: Quest) -> QuestParticipant:
            return quest.disqualify(user_id, reason)

        _, participant = await self._mutate("quest.disqualify", quest_id, _disqualify)
        return participant.to_dict()

    async def complete_quest(self, quest_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        async def _complete(session: AsyncSession, quest: Quest) -> None:
            if not quest.is_active:
                raise InvalidOperationError("complete_quest", "Quest is already completed")
            quest.complete(CompletionReason.MANUAL, now)

        quest, _ = await self._mutate("quest.complete", quest_id, _complete)
        return quest_to_dict(quest)
