from typing import Dict, List, Optional

from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import Task


class TaskQueue:
    """
    Priority-ordered queue of tasks for the orchestrator's run-loop.
    Higher ``priority`` values are dequeued first; equal priorities keep
    insertion order. The queue lives in memory only.
    """

    def __init__(self):
        self.queue: List[Task] = []

    def add_task(self, task: Task):
        """
        Inserts *task* after every queued task whose priority is >= its own.

        Args:
            task: The task to be added.
        """
        index = len(self.queue)
        for i, queued in enumerate(self.queue):
            if queued.priority < task.priority:
                index = i
                break
        self.queue.insert(index, task)
        log_json("INFO", "task_added", task=task.id,
                 details={"priority": task.priority, "position": index, "queue_size": len(self.queue)})

    def requeue(self, task: Task):
        """Appends *task* at the tail regardless of its priority (retry path)."""
        self.queue.append(task)
        log_json("INFO", "task_requeued", task=task.id,
                 details={"retry_count": task.retry_count, "queue_size": len(self.queue)})

    def get_next_task(self) -> Optional[Task]:
        """
        Retrieves and removes the next task from the front of the queue.

        Returns:
            The next task in the queue, or None if the queue is empty.
        """
        if self.queue:
            task = self.queue.pop(0)
            log_json("DEBUG", "task_retrieved", task=task.id, details={"queue_size": len(self.queue)})
            return task
        return None

    def has_tasks(self) -> bool:
        return len(self.queue) > 0

    def __len__(self) -> int:
        return len(self.queue)

    def status(self) -> Dict:
        return {
            "queue_length": len(self.queue),
            "tasks": [
                {"id": t.id, "kind": t.kind.value, "priority": t.priority, "retry_count": t.retry_count}
                for t in self.queue
            ],
        }
