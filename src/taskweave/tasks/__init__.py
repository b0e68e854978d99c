"""
Task subsystem.

Components:
- task_models.py: data structures (Task, identities, RecurrenceRule) and payload mapping
- recurrence.py: occurrence dates for recurring tasks
- task_store.py: the canonical in-memory collection
- write_scheduler.py: debounced, cancellable persistence writes
- drafts.py: unsaved tasks, commit and discard
- task_api.py: small high-level helpers used by the rest of the app
"""
