"""
Integration tests for RelicService: discovery, appraisal costs and archival.
"""

import pytest

from tests.conftest import published_event_names
from tinglebot.core.database.service import DatabaseService
from tinglebot.modules.shared.exceptions import (
    InsufficientResourcesError,
    InvalidOperationError,
)


@pytest.fixture
async def relic(services):
    await services.character.create_character("1", "Link", "Rudania")
    return await services.relic.discover("Ancient Tablet", "Link", "Eldin Canyon")


@pytest.mark.integration
class TestRelicAppraisal:
    """Test the appraisal paths."""

    async def test_character_appraisal_spends_stamina(self, services, relic, mock_event_bus):
        # Arrange
        zelda = await services.character.create_character(
            "2", "Zelda", "Inariko", job="Researcher", max_stamina=5
        )
        await services.relic.request_appraisal(relic["relic_id"], "Zelda", "1", payment=100)

        # Act
        appraised = await services.relic.appraise(relic["relic_id"], "zelda", "a blank")
        archived = await services.relic.archive(relic["relic_id"], "https://img.example/tablet.png")
        placed = await services.relic.place(relic["relic_id"], 12.5, 40)

        # Assert
        assert appraised["description"] == "Item appraised! It's a blank!"
        assert appraised["appraised_by"] == "Zelda"
        assert appraised["artist_fee"] == 100
        assert (await services.character.get_character(zelda["id"]))["current_stamina"] == 2
        assert archived["status"] == "archived"
        assert (placed["map_x"], placed["map_y"]) == (12.5, 40.0)
        assert [r["relic_id"] for r in await services.relic.list_archived()] == [relic["relic_id"]]
        events = published_event_names(mock_event_bus)
        assert "relic.discovered" in events
        assert "relic.appraised" in events

    async def test_appraiser_must_have_job(self, services, relic):
        await services.character.create_character("2", "Impa", "Inariko", job="Guard")

        await services.relic.request_appraisal(relic["relic_id"], "Impa", "1")
        with pytest.raises(InvalidOperationError):
            await services.relic.appraise(relic["relic_id"], "Impa", "a blank")

        assert (await services.relic.get_relic(relic["relic_id"]))["status"] == "awaiting_appraisal"

    async def test_wrong_village_appraiser(self, services, relic):
        await services.character.create_character("3", "Purah", "Vhintl", job="Researcher")
        await services.relic.request_appraisal(relic["relic_id"], "Purah", "1")

        with pytest.raises(InvalidOperationError):
            await services.relic.appraise(relic["relic_id"], "Purah", "a blank")

    async def test_tired_appraiser(self, services, relic):
        await services.character.create_character(
            "2", "Zelda", "Inariko", job="Artist", max_stamina=2
        )
        await services.relic.request_appraisal(relic["relic_id"], "Zelda", "1")

        with pytest.raises(InsufficientResourcesError):
            await services.relic.appraise(relic["relic_id"], "Zelda", "a blank")

    async def test_finder_cannot_appraise(self, services, relic):
        with pytest.raises(InvalidOperationError):
            await services.relic.request_appraisal(relic["relic_id"], "link", "1")


@pytest.mark.integration
class TestNpcAppraisal:
    """Test the paid NPC appraisal."""

    async def test_npc_requires_tokens(self, services, relic):
        with pytest.raises(InsufficientResourcesError):
            await services.relic.request_appraisal(relic["relic_id"], "NPC", "1")

        assert (await services.relic.get_relic(relic["relic_id"]))["status"] == "unappraised"

    async def test_npc_charges_and_appraises(self, services, relic):
        # Arrange
        async with DatabaseService.get_transaction() as session:
            await services.leveling.add_tokens(session, "1", 600, reason="test")

        # Act
        requested = await services.relic.request_appraisal(relic["relic_id"], "npc", "1")
        appraised = await services.relic.appraise(relic["relic_id"], "NPC", "a weathered coin")

        # Assert
        assert requested["requested_appraiser"] == "NPC"
        assert await services.leveling.get_balance("1") == 100
        assert appraised["appraised_by"] == "NPC"


@pytest.mark.integration
class TestRelicQueries:
    """Test reads and deterioration."""

    async def test_list_for_character(self, services, relic):
        await services.relic.discover("Rusty Gear", "Mipha")

        found = await services.relic.list_for_character("LINK")

        assert [r["name"] for r in found] == ["Ancient Tablet"]

    async def test_lookup_is_case_insensitive(self, services, relic):
        fetched = await services.relic.get_relic(relic["relic_id"].lower())

        assert fetched["name"] == "Ancient Tablet"

    async def test_deterioration(self, services, relic):
        result = await services.relic.mark_deteriorated(relic["relic_id"])

        assert result["status"] == "deteriorated"
        with pytest.raises(InvalidOperationError):
            await services.relic.request_appraisal(relic["relic_id"], "Zelda", "1")
