"""
Search task subsystem.

Components:
- task_models.py: data structures (SearchTask, SearchStatus, Identity)
- task_store.py: SQLite-backed storage + query/update helpers
- controller.py: per-identity state machine driving isolates
"""
