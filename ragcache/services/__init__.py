"""Read-through orchestration, warming and metrics."""
