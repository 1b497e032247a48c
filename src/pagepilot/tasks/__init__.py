"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskDraft, UsageMetrics, TaskResult, ...)
- task_store.py: SQLite-backed storage for tasks and usage metrics
- task_index.py: validated CRUD, website associations, ranking
- validation.py: field checks collecting every problem
- usage.py: online success-rate / average-time statistics
"""
