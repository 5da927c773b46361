"""
Integration tests for TableRollService.
"""

import random
from datetime import date

import pytest

from tinglebot.domain.models.base import DomainValidationError
from tinglebot.modules.shared.exceptions import NotFoundError, ValidationError

FOREST = [
    {"weight": 3, "item": "Apple", "flavor": "A crisp apple.", "rarity": "common"},
    {"weight": 1, "item": "Opal", "flavor": "It glitters.", "rarity": "Rare", "category": "gem"},
]

CSV_TEXT = (
    "Weight,Flavor,Item,ThumbnailImage,Category,Rarity\n"
    "5,Sweet,Apple,,food,common\n"
    "abc,Broken,Rock,,,common\n"
    "\n"
    "1,Shiny,Ruby,,gem,epic\n"
)


@pytest.mark.integration
class TestTableRollService:
    """Test table persistence and rolling."""

    async def test_create_and_read_back(self, services, mock_event_bus):
        # Act
        stats = await services.table_roll.create_table("Forest Finds", FOREST, created_by="Mod")
        table = await services.table_roll.get_table("Forest Finds")

        # Assert
        assert stats["entry_count"] == 2
        assert stats["total_weight"] == 4
        assert table["rarity_breakdown"] == {"common": 1, "rare": 1}
        assert table["entries"][1]["rarity"] == "rare"
        assert table["created_by"] == "Mod"
        mock_event_bus.publish.assert_any_await(
            "tableroll.created", {"name": "Forest Finds", "entry_count": 2}
        )

    async def test_duplicate_name_rejected(self, services):
        await services.table_roll.create_table("Forest Finds", FOREST)

        with pytest.raises(ValidationError):
            await services.table_roll.create_table("Forest Finds", FOREST)

    async def test_invalid_entries_rejected(self, services):
        with pytest.raises(DomainValidationError):
            await services.table_roll.create_table("Bad", [{"weight": 0, "item": "Nothing"}])

    async def test_roll_persists_counters(self, services):
        # Arrange
        await services.table_roll.create_table("Forest Finds", FOREST)

        # Act
        first = await services.table_roll.roll("Forest Finds", rng=random.Random(7))
        second = await services.table_roll.roll("Forest Finds", rng=random.Random(7))

        # Assert
        assert first["item"] in {"Apple", "Opal"}
        assert first["item"] == second["item"]
        assert first["index"] in {1, 2}
        assert second["roll_count"] == 2
        assert (await services.table_roll.get_table("Forest Finds"))["roll_count"] == 2

    async def test_daily_cap(self, services):
        await services.table_roll.create_table("Rare Drops", FOREST, max_rolls_per_day=1)
        today = date(2026, 4, 21)

        await services.table_roll.roll("Rare Drops", today=today)
        with pytest.raises(DomainValidationError):
            await services.table_roll.roll("Rare Drops", today=today)
        result = await services.table_roll.roll("Rare Drops", today=date(2026, 4, 22))

        assert result["roll_count"] == 2

    async def test_deactivated_table_cannot_roll(self, services):
        await services.table_roll.create_table("Forest Finds", FOREST)

        deactivated = await services.table_roll.deactivate_table("Forest Finds")

        assert deactivated == {"name": "Forest Finds", "is_active": False}
        assert await services.table_roll.list_tables() == []
        assert len(await services.table_roll.list_tables(active_only=False)) == 1
        with pytest.raises(DomainValidationError):
            await services.table_roll.roll("Forest Finds")

    async def test_unknown_table(self, services):
        with pytest.raises(NotFoundError):
            await services.table_roll.roll("Nowhere")


@pytest.mark.integration
class TestTableRollCsvImport:
    """Test CSV uploads."""

    async def test_import_reports_bad_lines(self, services):
        result = await services.table_roll.import_csv("Loot", CSV_TEXT, created_by="Mod")

        assert result["created"] is True
        assert result["entry_count"] == 2
        assert result["errors"] == ["Line 3: invalid weight 'abc'"]

    async def test_import_replaces_entries_and_reactivates(self, services):
        # Arrange
        await services.table_roll.create_table("Loot", FOREST)
        await services.table_roll.deactivate_table("Loot")

        # Act
        result = await services.table_roll.import_csv("Loot", CSV_TEXT)

        # Assert
        assert result["created"] is False
        table = await services.table_roll.get_table("Loot")
        assert table["is_active"] is True
        assert [e["item"] for e in table["entries"]] == ["Apple", "Ruby"]

    async def test_import_without_replace(self, services):
        await services.table_roll.create_table("Loot", FOREST)

        with pytest.raises(ValidationError):
            await services.table_roll.import_csv("Loot", CSV_TEXT, replace=False)

    async def test_import_without_valid_rows(self, services):
        with pytest.raises(ValidationError):
            await services.table_roll.import_csv("Loot", "Weight,Flavor,Item\nx,y,z\n")
