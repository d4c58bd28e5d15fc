import unittest
from unittest.mock import patch

from tekton_agent.core.task_queue import TaskQueue
from tekton_agent.core.types import Task


def _task(task_id, priority=0):
    return Task.monitor(task_id=task_id, priority=priority)


class TestTaskQueue(unittest.TestCase):

    def setUp(self):
        self.task_queue = TaskQueue()

    def test_add_task_and_get_next_task(self):
        self.task_queue.add_task(_task("t1"))
        self.task_queue.add_task(_task("t2"))

        self.assertTrue(self.task_queue.has_tasks())
        self.assertEqual(self.task_queue.get_next_task().id, "t1")
        self.assertEqual(self.task_queue.get_next_task().id, "t2")
        self.assertFalse(self.task_queue.has_tasks())
        self.assertIsNone(self.task_queue.get_next_task())

    def test_higher_priority_dequeued_first(self):
        self.task_queue.add_task(_task("low", priority=1))
        self.task_queue.add_task(_task("high", priority=10))
        self.task_queue.add_task(_task("mid", priority=5))

        order = [self.task_queue.get_next_task().id for _ in range(3)]
        self.assertEqual(order, ["high", "mid", "low"])

    def test_equal_priorities_keep_insertion_order(self):
        for name in ("a", "b", "c"):
            self.task_queue.add_task(_task(name, priority=3))
        self.task_queue.add_task(_task("first", priority=4))

        order = [self.task_queue.get_next_task().id for _ in range(4)]
        self.assertEqual(order, ["first", "a", "b", "c"])

    def test_requeue_goes_to_tail(self):
        self.task_queue.add_task(_task("a", priority=1))
        retried = _task("retry", priority=9)
        self.task_queue.requeue(retried)

        self.assertEqual(self.task_queue.get_next_task().id, "a")
        self.assertEqual(self.task_queue.get_next_task().id, "retry")

    def test_status_lists_queued_tasks(self):
        self.task_queue.add_task(_task("a", priority=2))
        status = self.task_queue.status()
        self.assertEqual(status["queue_length"], 1)
        self.assertEqual(status["tasks"][0], {"id": "a", "kind": "monitor-changes", "priority": 2, "retry_count": 0})
        self.assertEqual(len(self.task_queue), 1)

    def test_add_task_logs(self):
        with patch("tekton_agent.core.task_queue.log_json") as mock_log_json:
            self.task_queue.add_task(_task("a"))
        mock_log_json.assert_called_once_with(
            "INFO", "task_added", task="a", details={"priority": 0, "position": 0, "queue_size": 1}
        )


if __name__ == "__main__":
    unittest.main()
