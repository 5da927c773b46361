"""
Unit tests for the bot layer: embeds, BaseCog error handling and cog discovery.
"""

import pytest

from tinglebot.bot.base_cog import BaseCog, format_duration
from tinglebot.bot.loader import FeatureLoader
from tinglebot.modules.raid.raid_cog import RaidCog
from tinglebot.modules.shared.exceptions import (
    CooldownActiveError,
    InsufficientResourcesError,
    NotFoundError,
)
from tinglebot.ui.embed_builder import EmbedBuilder, hearts_bar, truncate_text


@pytest.mark.unit
class TestEmbedHelpers:
    """Test text helpers and embed builders."""

    def test_truncate_text(self):
        assert truncate_text("short", 10) == "short"
        assert truncate_text("a" * 20, 10) == "aaaaaaa..."

    def test_hearts_bar(self):
        assert hearts_bar(7, 10) == "[#######---] 7/10"
        assert hearts_bar(0, 3) == "[----------] 0/3"
        assert hearts_bar(5, 0) == "[##########] 5/1"

    @pytest.mark.parametrize(
        "seconds, expected",
        [(0, "0s"), (59, "59s"), (60, "1m"), (3725, "1h 2m 5s"), (-5, "0s")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_raid_status_marks_current_turn(self):
        raid = {
            "raid_id": "R123456",
            "village": "Rudania",
            "status": "active",
            "current_turn": 1,
            "monster": {"name": "Hinox", "tier": 6, "current_hearts": 8, "max_hearts": 10},
            "participants": [
                {"name": "Link", "damage": 2, "is_ko": False},
                {"name": "Mipha", "damage": 0, "is_ko": True},
            ],
        }

        embed = EmbedBuilder.raid_status(raid)

        assert "Hinox" in embed.title
        field = embed.fields[0]
        assert field.name == "Participants (2)"
        assert "`>` **Mipha** (KO)" in field.value

    def test_error_embed_includes_help(self):
        embed = EmbedBuilder.error("Nope", "Something failed", help_text="Try again")

        assert "**Help:** Try again" in embed.description


@pytest.mark.unit
class TestBaseCog:
    """Test domain-error handling shared by every cog."""

    async def test_run_command_returns_result(self, mock_bot, mock_context):
        cog = BaseCog(mock_bot, "TestCog")

        async def operation():
            return {"ok": True}

        assert await cog.run_command(mock_context, "test", operation()) == {"ok": True}
        mock_context.reply.assert_not_awaited()

    async def test_run_command_reports_domain_errors(self, mock_bot, mock_context):
        # Arrange
        cog = BaseCog(mock_bot, "TestCog")

        async def operation():
            raise NotFoundError("Raid", "R1")

        # Act
        result = await cog.run_command(mock_context, "test", operation())

        # Assert
        assert result is None
        embed = mock_context.reply.await_args.kwargs["embed"]
        assert embed.title == "Not Found"
        assert "R1" in embed.description

    async def test_unexpected_errors_propagate(self, mock_bot, mock_context):
        cog = BaseCog(mock_bot, "TestCog")

        async def operation():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await cog.run_command(mock_context, "test", operation())

    async def test_cooldown_message(self, mock_bot, mock_context):
        cog = BaseCog(mock_bot, "TestCog")

        handled = await cog.handle_standard_errors(mock_context, CooldownActiveError("raid", 3725))

        assert handled is True
        embed = mock_context.reply.await_args.kwargs["embed"]
        assert "1h 2m 5s" in embed.description

    async def test_insufficient_resources_message(self, mock_bot, mock_context):
        cog = BaseCog(mock_bot, "TestCog")

        await cog.handle_standard_errors(mock_context, InsufficientResourcesError("tokens", 500, 20))

        embed = mock_context.reply.await_args.kwargs["embed"]
        assert "**500** tokens" in embed.description

    async def test_unknown_errors_not_handled(self, mock_bot, mock_context):
        cog = BaseCog(mock_bot, "TestCog")

        assert await cog.handle_standard_errors(mock_context, ValueError("x")) is False

    def test_services_come_from_bot(self, mock_bot):
        cog = BaseCog(mock_bot, "TestCog")

        assert cog.services is mock_bot.service_container


@pytest.mark.unit
class TestFeatureLoader:
    """Test cog discovery."""

    def test_discovers_every_feature_cog(self, mocker, mock_config_manager):
        loader = FeatureLoader(mocker.MagicMock(), mock_config_manager)

        assert loader.discover_cogs() == [
            "tinglebot.modules.character.character_cog",
            "tinglebot.modules.leveling.leveling_cog",
            "tinglebot.modules.quest.quest_cog",
            "tinglebot.modules.raid.raid_cog",
            "tinglebot.modules.relic.relic_cog",
            "tinglebot.modules.steal.steal_cog",
            "tinglebot.modules.tableroll.tableroll_cog",
        ]


def turn_result(**overrides) -> dict:
    result = {
        "roll": 40,
        "adjusted_roll": 39,
        "message": "You dodge the first attack but take a glancing hit.",
        "character_ko": False,
        "monster_defeated": False,
        "party_wiped": False,
        "turn_advanced": True,
        "next_character_id": 2,
        "next_user_id": "2",
        "raid": {
            "raid_id": "R123456",
            "monster": {"name": "Bokoblin", "current_hearts": 4, "max_hearts": 5},
        },
    }
    result.update(overrides)
    return result


@pytest.mark.unit
class TestRaidCogTurnTimer:
    """Test when the raid cog re-arms the idle-turn timer."""

    @pytest.fixture
    def cog(self, mocker, mock_bot):
        cog = RaidCog(mock_bot)
        mocker.patch.object(cog, "_character_id", mocker.AsyncMock(return_value=1))
        return cog

    async def test_turn_rearms_timer_for_next_player(self, mocker, cog, mock_bot, mock_context):
        # Arrange
        mock_bot.service_container.raid.process_turn = mocker.AsyncMock(return_value=turn_result())
        schedule = mocker.patch.object(cog, "_schedule_turn_timer")

        # Act
        await cog.raid_attack.callback(cog, mock_context, "R123456", character="Link")

        # Assert
        schedule.assert_called_once_with("R123456", 2, mock_context.channel)
        mock_context.reply.assert_awaited_once()

    async def test_mod_strike_keeps_current_timer(self, mocker, cog, mock_bot, mock_context):
        mock_bot.service_container.raid.process_turn = mocker.AsyncMock(
            return_value=turn_result(turn_advanced=False, next_character_id=1, next_user_id="1")
        )
        schedule = mocker.patch.object(cog, "_schedule_turn_timer")

        await cog.raid_attack.callback(cog, mock_context, "R123456", character="Rauru")

        schedule.assert_not_called()

    async def test_party_wipe_cancels_timer(self, mocker, cog, mock_bot, mock_context):
        mock_bot.service_container.raid.process_turn = mocker.AsyncMock(
            return_value=turn_result(
                character_ko=True, party_wiped=True, turn_advanced=False, next_character_id=None
            )
        )
        cancel = mocker.patch.object(cog, "_cancel_turn_timer")

        await cog.raid_attack.callback(cog, mock_context, "R123456", character="Mipha")

        cancel.assert_called_once_with("R123456")
        embed = mock_context.reply.await_args.kwargs["embed"]
        assert embed.title == "Raid R123456 Failed"

    async def test_revival_restores_raid_participant(self, mocker, cog, mock_bot):
        restore = mocker.AsyncMock(return_value=["R123456"])
        mock_bot.service_container.raid.restore_participant = restore

        await cog._on_character_revived({"character_id": 7})

        restore.assert_awaited_once_with(7)
