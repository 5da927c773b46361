"""
Configuration subsystem for Tinglebot.

- **config.py**: static settings from environment variables (.env support)
- **manager.py**: game balance values from ``config/*.yaml``

The manager is imported from its own module so that the logging subsystem
can depend on ``Config`` without pulling the manager in.

Usage
-----
```python
from tinglebot.core.config import Config
from tinglebot.core.config.manager import ConfigManager

token = Config.DISCORD_TOKEN
await ConfigManager.initialize()
max_penalty = ConfigManager.get("raid.turn_roll.max_penalty", 15)
```
"""

from tinglebot.core.config.config import Config

__all__ = ["Config"]
