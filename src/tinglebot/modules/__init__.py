"""Feature modules. Each package holds a service and a ``*_cog`` module discovered at startup."""
