"""Service layer helpers (settings, telemetry, session persistence, retrieval)."""
