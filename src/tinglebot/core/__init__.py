"""Infrastructure layer: configuration, logging, database, Redis, events and wiring."""
