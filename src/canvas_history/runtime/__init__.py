"""Runtime services (telemetry) shared across the engine."""
