"""
ConfigManager: dot-notation access to game balance values.

Purpose
-------
- Load balance defaults from the ``config/`` directory (YAML).
- Deep-merge every file into a single tree.
- Serve values by dotted path (``"raid.turn_roll.max_penalty"``).

Key Design Decisions
--------------------
- YAML is the single source for tunables; environment-level settings stay in
  ``Config``.
- ``set()`` is an in-memory override used by tests and admin commands; it is
  not persisted.
"""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

import yaml

from tinglebot.core.config.config import Config
from tinglebot.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConfigManager:
    """
    Game configuration registry backed by YAML files.

    Features
    --------
    - Hierarchical config access with dot notation (e.g. ``"raid.max_participants"``).
    - Idempotent async initialization.
    - In-memory overrides for hot balance changes.
    """

    _cache: Dict[str, Any] = {}
    _defaults: Dict[str, Any] = {}
    _initialized: bool = False
    _init_lock: asyncio.Lock = asyncio.Lock()
    _config_dir: Optional[Path] = None

    # =========================================================================
    # YAML LOADING & DEFAULTS
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = value

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        """Recursively load all YAML files under `config_dir` into `_defaults`."""
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue

            if isinstance(data, dict):
                cls._deep_merge_dict(cls._defaults, data)
                loaded_count += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "root_type": type(data).__name__,
                    },
                )

        logger.info(
            "YAML configs loaded",
            extra={"yaml_file_count": loaded_count, "top_level_keys": len(cls._defaults)},
        )

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    @classmethod
    async def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """Load YAML defaults into the cache (idempotent)."""
        async with cls._init_lock:
            if cls._initialized:
                return

            cls._config_dir = Path(config_dir) if config_dir else Config.YAML_CONFIG_DIR
            cls._defaults = {}
            cls._load_yaml_configs(cls._config_dir)
            cls._cache = copy.deepcopy(cls._defaults)
            cls._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop all loaded values. Used by tests and by reload()."""
        cls._cache = {}
        cls._defaults = {}
        cls._initialized = False

    @classmethod
    async def reload(cls) -> None:
        config_dir = cls._config_dir
        cls.reset()
        await cls.initialize(config_dir)

    # =========================================================================
    # ACCESS
    # =========================================================================

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> ConfigManager.get("raid.max_participants", 10)
        10
        >>> ConfigManager.get("quest.default_post_requirement", 15)
        15
        """
        if not cls._initialized:
            logger.warning(
                "ConfigManager accessed before explicit initialization; "
                "falling back to defaults only"
            )

        value: Any = cls._cache
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]

        return default if value is None else value

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """Override a value in memory by dot-notation path."""
        parts = key.split(".")
        node: Dict[str, Any] = cls._cache
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

        logger.info("Config value overridden", extra={"config_key": key})

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized
