"""HTTP API layer (FastAPI).

A small, versioned `/api/v1` surface to queue runs for one of the tasks and to read
back their status, outcome and trace events. Core behavior lives in `sleuth.runtime`
and `sleuth.storage`.
"""
