"""
Task Store - Durable task records

Tasks are stored whole under "task:{id}". Every mutation is
read-modify-write: get a copy, change it, put it back. put() overwrites
blindly, so two writers updating the same task concurrently race and the
last put wins in full; no field-level merge is attempted.
"""

from typing import List, Optional

from shared.kv_store import KeyValueStore
from shared.schemas import Task

TASK_PREFIX = "task:"


class TaskStore:
    """Key-value backed store for Task records"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, task_id: str) -> Optional[Task]:
        """
        Load a task.

        Args:
            task_id: Task identifier

        Returns:
            A fresh copy of the stored task, or None if absent
        """
        raw = self.store.get(f"{TASK_PREFIX}{task_id}")
        return Task.from_json(raw) if raw else None

    def put(self, task: Task) -> None:
        self.store.put(f"{TASK_PREFIX}{task.id}", task.to_json())

    def list_by_user(self, user_id: str) -> List[Task]:
        """
        List a user's tasks, newest first.

        Scans every task key; fine for the in-process store, a real
        backend would keep a per-user index.
        """
        tasks = []
        for key in self.store.list(TASK_PREFIX):
            raw = self.store.get(key)
            if not raw:
                continue
            task = Task.from_json(raw)
            if task.user_id == user_id:
                tasks.append(task)
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)
