"""Pure domain layer: game rules with no database, Redis or Discord access."""
