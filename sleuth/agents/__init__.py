"""Run wiring: the per-run context and the task registry."""
