"""
Integration tests for CharacterService and service logging at INFO level.
"""

import logging

import pytest

from tinglebot.domain.models.base import DomainValidationError
from tinglebot.modules.shared.exceptions import InvalidOperationError, ValidationError


@pytest.mark.integration
class TestCharacterService:
    """Test registration, travel and revival."""

    async def test_create_character_with_info_logging(self, services, caplog):
        # Arrange
        caplog.set_level(logging.INFO)

        # Act
        link = await services.character.create_character("1", "Link", "rudania")

        # Assert
        assert link["home_village"] == "Rudania"
        assert link["current_hearts"] == 3
        record = next(r for r in caplog.records if r.getMessage() == "Service operation: create_character")
        assert record.character_name == "Link"
        assert record.name.startswith("tinglebot.modules.character")

    async def test_create_table_with_info_logging(self, services, caplog):
        caplog.set_level(logging.INFO)

        await services.table_roll.create_table("Loot", [{"weight": 1, "item": "Apple"}])
        deactivated = await services.table_roll.deactivate_table("Loot")

        assert deactivated["is_active"] is False
        operations = [r for r in caplog.records if getattr(r, "operation", None) == "create_table"]
        assert operations[0].table_name == "Loot"

    async def test_duplicate_name_rejected_per_owner(self, services):
        await services.character.create_character("1", "Link", "Rudania")

        with pytest.raises(ValidationError):
            await services.character.create_character("1", "link", "Inariko")
        other = await services.character.create_character("2", "Link", "Inariko")
        assert other["user_id"] == "2"

    async def test_unknown_village_rejected(self, services):
        with pytest.raises(DomainValidationError):
            await services.character.create_character("1", "Link", "Hateno")

    async def test_travel_and_revive(self, services):
        # Arrange
        link = await services.character.create_character("1", "Link", "Rudania")

        # Act
        moved = await services.character.move_to_village(link["id"], "vhintl")

        # Assert
        assert moved["current_village"] == "Vhintl"
        with pytest.raises(InvalidOperationError):
            await services.character.revive(link["id"])
