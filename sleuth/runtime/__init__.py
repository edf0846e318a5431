"""Runtime execution (background worker).

This layer is responsible for:
- claiming queued runs from SQLite
- executing them through the task registry
- recording the outcome as run status and trace events

It stays independent from the HTTP layer (`sleuth.api`), so both the CLI and the
API reuse the same execution logic.
"""
