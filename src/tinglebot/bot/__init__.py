"""Discord bot layer: bot class, cog base class and cog loader."""
