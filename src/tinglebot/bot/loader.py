"""
Cog discovery and loading.

Every ``tinglebot.modules.<feature>.<feature>_cog`` module is a discord.py
extension with an ``async def setup(bot)``. Extensions load concurrently,
each bounded by ``bot.feature_load_timeout_seconds``; one broken cog is
logged and skipped, never fatal to startup.
"""

from __future__ import annotations

import asyncio
import pkgutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from tinglebot.core.logging.logger import get_logger

if TYPE_CHECKING:
    from discord.ext import commands

    from tinglebot.core.config.manager import ConfigManager

logger = get_logger(__name__)


@dataclass
class LoadResult:
    name: str
    success: bool
    duration_ms: float
    error: Optional[str] = None


class FeatureLoader:
    MODULES_PATH: Path = Path(__file__).parent.parent / "modules"
    MODULES_PACKAGE: str = "tinglebot.modules"
    COG_SUFFIX: str = "_cog"

    def __init__(self, bot: commands.Bot, config_manager: ConfigManager) -> None:
        self.bot = bot
        self.timeout_seconds = float(config_manager.get("bot.feature_load_timeout_seconds", 30.0))
        self.load_results: List[LoadResult] = []

    def discover_cogs(self) -> List[str]:
        """Dotted names of every cog module, sorted."""
        return sorted(
            name
            for _, name, is_pkg in pkgutil.walk_packages(
                [str(self.MODULES_PATH)], prefix=f"{self.MODULES_PACKAGE}."
            )
            if not is_pkg and name.endswith(self.COG_SUFFIX)
        )

    async def load_all_features(self) -> Dict[str, Any]:
        """Load every discovered cog and return ``{"loaded", "failed", "results"}``."""
        names = self.discover_cogs()
        if not names:
            logger.warning("No cog modules found", extra={"path": str(self.MODULES_PATH)})

        self.load_results = list(await asyncio.gather(*(self._load(name) for name in names)))

        failed = [r for r in self.load_results if not r.success]
        stats = {
            "loaded": len(self.load_results) - len(failed),
            "failed": len(failed),
            "results": self.load_results,
        }
        logger.info(
            "Cogs loaded",
            extra={"loaded": stats["loaded"], "failed": [r.name for r in failed]},
        )
        return stats

    async def _load(self, name: str) -> LoadResult:
        start = time.perf_counter()

        def elapsed() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        try:
            await asyncio.wait_for(self.bot.load_extension(name), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Cog load timed out", extra={"cog": name, "timeout": self.timeout_seconds})
            return LoadResult(name, False, elapsed(), f"timed out after {self.timeout_seconds}s")
        except Exception as exc:
            logger.error("Cog failed to load", extra={"cog": name}, exc_info=True)
            return LoadResult(name, False, elapsed(), f"{type(exc).__name__}: {exc}")

        logger.debug("Cog loaded", extra={"cog": name, "ms": elapsed()})
        return LoadResult(name, True, elapsed())
