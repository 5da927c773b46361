"""
Integration tests for QuestService.

Covers each quest type end to end: RP post counting with village checks,
art submissions, table-roll driven interactive quests, auto-completion and
token rewards.
"""

from datetime import timedelta

import pytest

from tests.conftest import published_event_names, published_payloads
from tinglebot.domain.models.base import utc_now
from tinglebot.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    QuestTypeMismatchError,
    ValidationError,
)

GOOD_POST = "Link climbs the ridge above the village and scans the horizon for smoke."


@pytest.fixture
async def link(services):
    return await services.character.create_character("1", "Link", "Rudania")


async def create_rp_quest(services, **kwargs):
    kwargs.setdefault("quest_id", "Q100001")
    kwargs.setdefault("required_village", "Rudania")
    kwargs.setdefault("post_requirement", 2)
    kwargs.setdefault("time_limit", "1 week")
    kwargs.setdefault("token_reward", 300)
    return await services.quest.create_quest("Smoke on the Ridge", "RP", **kwargs)


@pytest.mark.integration
class TestQuestCreation:
    """Test posting quests."""

    async def test_rp_quest_defaults_post_requirement(self, services, mock_event_bus):
        quest = await services.quest.create_quest("Village Watch", "RP", quest_id="Q100002")

        assert quest["post_requirement"] == 15
        assert quest["status"] == "active"
        assert quest["quest_type"] == "RP"
        assert "quest.created" in published_event_names(mock_event_bus)

    async def test_token_reward_is_normalized(self, services):
        quest = await services.quest.create_quest(
            "Fetch Quest", "Art", quest_id="Q100003", token_reward="N/A"
        )

        assert quest["token_reward"] == 0.0

    async def test_duplicate_quest_id_rejected(self, services):
        await create_rp_quest(services)

        with pytest.raises(ValidationError):
            await create_rp_quest(services)

    async def test_unknown_type_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.quest.create_quest("Bad", "Dungeon")

    async def test_unknown_quest(self, services):
        with pytest.raises(NotFoundError):
            await services.quest.get_quest("Q999999")


@pytest.mark.integration
class TestRPQuestFlow:
    """Test joining, posting and completing an RP quest."""

    async def test_posts_then_auto_completion(self, services, link, mock_event_bus):
        # Arrange
        await create_rp_quest(services)
        joined = await services.quest.join_quest("Q100001", "1", "link")

        # Act
        rejected = await services.quest.record_rp_post("Q100001", "1", "ok")
        await services.quest.record_rp_post("Q100001", "1", GOOD_POST)
        second = await services.quest.record_rp_post("Q100001", "1", GOOD_POST)
        summary = await services.quest.run_auto_completion()

        # Assert
        assert joined["participant"]["character_name"] == "Link"
        assert rejected["valid"] is False
        assert second == {
            "valid": True,
            "reason": None,
            "post_count": 2,
            "post_requirement": 2,
            "requirement_met": True,
        }
        assert summary == {"checked": 1, "completed": 1, "participants_completed": 1, "errors": 0}
        quest = await services.quest.get_quest("Q100001")
        assert quest["status"] == "completed"
        assert quest["completion_reason"] == "all_participants_completed"
        assert "quest.completed" in published_event_names(mock_event_bus)

    async def test_join_requires_quest_village(self, services):
        await services.character.create_character("2", "Zelda", "Inariko")
        await create_rp_quest(services)

        with pytest.raises(InvalidOperationError):
            await services.quest.join_quest("Q100001", "2", "Zelda")

    async def test_join_requires_owned_character(self, services, link):
        await create_rp_quest(services)

        with pytest.raises(NotFoundError):
            await services.quest.join_quest("Q100001", "2", "Link")

    async def test_leaving_village_disqualifies(self, services, link):
        # Arrange
        await create_rp_quest(services)
        await services.quest.join_quest("Q100001", "1", "Link")
        await services.character.move_to_village(link["id"], "Inariko")

        # Act
        result = await services.quest.check_village_locations("Q100001")

        # Assert
        assert result == {"checked": 1, "disqualified": 1}
        quest = await services.quest.get_quest("Q100001")
        assert quest["participants"]["1"]["progress"] == "disqualified"

    async def test_leave_is_permanent(self, services, link):
        await create_rp_quest(services)
        await services.quest.join_quest("Q100001", "1", "Link")

        left = await services.quest.leave_quest("Q100001", "1")

        assert left["quest"]["participants"] == {}
        assert left["quest"]["left_participants"][0]["character_name"] == "Link"
        with pytest.raises(InvalidOperationError):
            await services.quest.join_quest("Q100001", "1", "Link")

    async def test_roll_on_rp_quest_rejected(self, services, link):
        await create_rp_quest(services)
        await services.quest.join_quest("Q100001", "1", "Link")

        with pytest.raises(QuestTypeMismatchError):
            await services.quest.roll_for_quest("Q100001", "1")


@pytest.mark.integration
class TestSubmissionQuestFlow:
    """Test art submissions and approval."""

    async def test_submit_and_approve(self, services, link, mock_event_bus):
        # Arrange
        await services.quest.create_quest("Paint the Tower", "Art", quest_id="Q200001")
        await services.quest.join_quest("Q200001", "1", "Link")
        url = "https://art.example/tower.png"

        # Act
        submission = await services.quest.submit("Q200001", "1", "art", url)
        approved = await services.quest.approve_submission("Q200001", "1", url, "Mod")

        # Assert
        assert submission["approved"] is False
        assert approved["submission"]["approved_by"] == "Mod"
        assert approved["progress"] == "completed"
        received = published_payloads(mock_event_bus, "quest.submission_received")
        assert received == [{"quest_id": "Q200001", "user_id": "1", "type": "art", "url": url}]

    async def test_approve_unknown_url(self, services, link):
        await services.quest.create_quest("Paint the Tower", "Art", quest_id="Q200001")
        await services.quest.join_quest("Q200001", "1", "Link")

        with pytest.raises(NotFoundError):
            await services.quest.approve_submission("Q200001", "1", "https://nope", "Mod")


@pytest.mark.integration
class TestInteractiveQuestFlow:
    """Test table rolls scored against a quest."""

    async def test_rare_roll_completes_participant(self, services, link):
        # Arrange
        await services.table_roll.create_table(
            "Herbs", [{"weight": 1, "item": "Silent Princess", "rarity": "rare"}]
        )
        await services.quest.create_quest("Gather Herbs", "Interactive", quest_id="Q300001")
        configured = await services.quest.configure_table_roll(
            "Q300001", "Herbs", required_rolls=1, success_criteria="rarity:rare"
        )
        await services.quest.join_quest("Q300001", "1", "Link")

        # Act
        outcome = await services.quest.roll_for_quest("Q300001", "1")

        # Assert
        assert configured["table_roll_name"] == "Herbs"
        assert outcome["roll"]["item"] == "Silent Princess"
        assert outcome["success"] is True
        assert outcome["quest_completed"] is True
        quest = await services.quest.get_quest("Q300001")
        assert quest["participants"]["1"]["progress"] == "completed"
        assert (await services.table_roll.get_table("Herbs"))["roll_count"] == 1

    async def test_disqualified_roll_leaves_table_untouched(self, services, mock_event_bus, link):
        await services.table_roll.create_table("Herbs", [{"weight": 1, "item": "Hyrule Herb"}])
        await services.quest.create_quest("Gather Herbs", "Interactive", quest_id="Q300001")
        await services.quest.configure_table_roll("Q300001", "Herbs", required_rolls=3)
        await services.quest.join_quest("Q300001", "1", "Link")
        await services.quest.disqualify("Q300001", "1", "Rolled in the wrong thread")

        with pytest.raises(InvalidOperationError):
            await services.quest.roll_for_quest("Q300001", "1")

        table = await services.table_roll.get_table("Herbs")
        assert table["roll_count"] == 0
        assert "tableroll.rolled" not in published_event_names(mock_event_bus)

    async def test_unknown_table_rejected(self, services):
        await services.quest.create_quest("Gather Herbs", "Interactive", quest_id="Q300001")

        with pytest.raises(NotFoundError):
            await services.quest.configure_table_roll("Q300001", "Missing")

    async def test_roll_without_table(self, services, link):
        await services.quest.create_quest("Gather Herbs", "Interactive", quest_id="Q300001")
        await services.quest.join_quest("Q300001", "1", "Link")

        with pytest.raises(InvalidOperationError):
            await services.quest.roll_for_quest("Q300001", "1")


@pytest.mark.integration
class TestQuestCompletionAndRewards:
    """Test time expiry, manual completion and rewards."""

    async def test_expired_quest_completes(self, services):
        await create_rp_quest(
            services, time_limit="1 day", now=utc_now() - timedelta(days=2)
        )

        summary = await services.quest.run_auto_completion()

        assert summary["completed"] == 1
        quest = await services.quest.get_quest("Q100001")
        assert quest["completion_reason"] == "time_expired"

    async def test_reward_pays_tokens_once(self, services, link, mock_event_bus):
        # Arrange
        await create_rp_quest(services, post_requirement=1)
        await services.quest.join_quest("Q100001", "1", "Link")
        await services.quest.record_rp_post("Q100001", "1", GOOD_POST)
        await services.quest.run_auto_completion()

        # Act
        reward = await services.quest.reward_participant("Q100001", "1")

        # Assert
        assert reward["tokens"] == 300
        assert reward["new_token_balance"] == 300
        assert await services.leveling.get_balance("1") == 300
        assert "quest.participant_rewarded" in published_event_names(mock_event_bus)
        with pytest.raises(InvalidOperationError):
            await services.quest.reward_participant("Q100001", "1")
        assert await services.leveling.get_balance("1") == 300

    async def test_reward_requires_completion(self, services, link):
        await create_rp_quest(services)
        await services.quest.join_quest("Q100001", "1", "Link")

        with pytest.raises(InvalidOperationError):
            await services.quest.reward_participant("Q100001", "1")
        assert await services.leveling.get_balance("1") == 0

    async def test_disqualify(self, services, link):
        await create_rp_quest(services)
        await services.quest.join_quest("Q100001", "1", "Link")

        participant = await services.quest.disqualify("Q100001", "1", "Broke the rules")

        assert participant["progress"] == "disqualified"
        assert participant["disqualification_reason"] == "Broke the rules"

    async def test_manual_completion_once(self, services):
        await create_rp_quest(services)

        quest = await services.quest.complete_quest("Q100001")

        assert quest["completion_reason"] == "manual"
        assert await services.quest.list_active_quests() == []
        with pytest.raises(InvalidOperationError):
            await services.quest.complete_quest("Q100001")
