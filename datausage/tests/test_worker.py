import unittest

from datausage.db import UserDataUsage
from datausage.exceptions import CommitError
from datausage.worker import batch_ranges, refresh_all


class RecordingCoordinator:
    def __init__(self, seen, fail_on=None):
        self.seen = seen
        self.fail_on = fail_on

    def update_user_data_usage_batch(self, start, end=None):
        self.seen.append((start, end))
        if start == self.fail_on:
            raise CommitError("commit failed")
        return [UserDataUsage(id=start, user_id=start, username=start, total=1.0)]


class WorkerTests(unittest.TestCase):
    def test_batch_ranges_cover_username_space(self):
        ranges = batch_ranges("ab")
        self.assertEqual(ranges, [("", "a"), ("a", "b"), ("b", None)])

        default = batch_ranges()
        self.assertEqual(default[0], ("", "0"))
        self.assertEqual(default[-1], ("z", None))
        for (_, end), (start, _) in zip(default, default[1:]):
            self.assertEqual(end, start)

    def test_refresh_all_uses_fresh_coordinator_per_range(self):
        seen = []
        factory_calls = []

        def factory():
            factory_calls.append(1)
            return RecordingCoordinator(seen)

        published = refresh_all(factory, batch_ranges("ab"))
        self.assertEqual(published, 3)
        self.assertEqual(len(factory_calls), 3)
        self.assertEqual(seen, [("", "a"), ("a", "b"), ("b", None)])

    def test_refresh_all_continues_after_failure(self):
        seen = []
        with self.assertLogs("datausage.worker", level="ERROR"):
            published = refresh_all(
                lambda: RecordingCoordinator(seen, fail_on="a"), batch_ranges("ab")
            )
        self.assertEqual(published, 2)
        self.assertEqual(len(seen), 3)


if __name__ == "__main__":
    unittest.main()
