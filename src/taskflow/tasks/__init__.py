"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskDraft, TaskStatus, ChangeEvent)
- task_store.py: in-memory list of the signed-in user's tasks
- task_controller.py: optimistic create/update/delete against the backend
- task_reconciler.py: applies realtime change events to the store
- task_views.py: dashboard/kanban/calendar projections
"""
