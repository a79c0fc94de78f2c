import unittest
from unittest.mock import patch

from datausage import dependencies
from datausage.queue import InMemoryUsageEventQueue
from datausage.tests.fakes import make_settings


class InMemoryUsageEventQueueTests(unittest.TestCase):
    def test_fifo_order(self):
        queue = InMemoryUsageEventQueue()
        queue.publish("a")
        queue.publish("b")
        self.assertEqual(queue.pop(), "a")
        self.assertEqual(queue.pop(), "b")
        self.assertIsNone(queue.pop())

    def test_full_queue_drops_oldest_and_warns(self):
        queue = InMemoryUsageEventQueue(maxlen=2)
        queue.publish("a")
        queue.publish("b")
        with self.assertLogs("datausage.queue", level="WARNING"):
            queue.publish("c")
        self.assertEqual(list(queue.items), ["b", "c"])
        self.assertEqual(queue.dropped, 1)


class EventQueueWiringTests(unittest.TestCase):
    def setUp(self):
        patcher = patch.object(dependencies, "_event_queue", None)
        patcher.start()
        self.addCleanup(patcher.stop)

    @patch("datausage.dependencies.get_settings")
    def test_missing_redis_url_warns_and_uses_bounded_queue(self, mock_settings):
        mock_settings.return_value = make_settings()
        with self.assertLogs("datausage.dependencies", level="WARNING") as logs:
            queue = dependencies.get_event_queue()
        self.assertIsInstance(queue, InMemoryUsageEventQueue)
        self.assertIsNotNone(queue.items.maxlen)
        self.assertTrue(any("redis.url is not set" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
