"""
Unit tests for the YAML-backed ConfigManager.
"""

import pytest

from tinglebot.core.config.manager import ConfigManager


@pytest.fixture
def isolated_config():
    ConfigManager.reset()
    yield ConfigManager
    ConfigManager.reset()


@pytest.mark.unit
class TestConfigManager:
    """Test loading, lookup and overrides."""

    async def test_yaml_files_are_deep_merged(self, tmp_path, isolated_config):
        # Arrange
        (tmp_path / "raid.yaml").write_text("raid:\n  max_participants: 8\n  turn_roll:\n    max: 100\n")
        nested = tmp_path / "balance"
        nested.mkdir()
        (nested / "extra.yaml").write_text("raid:\n  turn_roll:\n    min: 5\n")

        # Act
        await isolated_config.initialize(tmp_path)

        # Assert
        assert isolated_config.is_initialized()
        assert isolated_config.get("raid.max_participants") == 8
        assert isolated_config.get("raid.turn_roll.min") == 5
        assert isolated_config.get("raid.turn_roll.max") == 100

    async def test_missing_keys_use_default(self, tmp_path, isolated_config):
        (tmp_path / "quest.yaml").write_text("quest:\n  default_post_requirement: ~\n")

        await isolated_config.initialize(tmp_path)

        assert isolated_config.get("quest.default_post_requirement", 15) == 15
        assert isolated_config.get("quest.unknown.deep", "x") == "x"

    async def test_invalid_yaml_is_skipped(self, tmp_path, isolated_config):
        (tmp_path / "a.yaml").write_text("steal:\n  protection_seconds: 60\n")
        (tmp_path / "b.yaml").write_text("steal: [unclosed\n")

        await isolated_config.initialize(tmp_path)

        assert isolated_config.get("steal.protection_seconds") == 60

    async def test_set_overrides_until_reload(self, tmp_path, isolated_config):
        # Arrange
        (tmp_path / "raid.yaml").write_text("raid:\n  max_participants: 10\n")
        await isolated_config.initialize(tmp_path)

        # Act
        isolated_config.set("raid.max_participants", 2)
        overridden = isolated_config.get("raid.max_participants")
        await isolated_config.reload()

        # Assert
        assert overridden == 2
        assert isolated_config.get("raid.max_participants") == 10

    async def test_repository_config_loads(self, config_manager):
        assert config_manager.get("raid.max_participants") == 10
        assert config_manager.get("steal.failure_chances.uncommon") == 50
        assert config_manager.get("relic.appraiser_jobs") == ["Artist", "Researcher"]
