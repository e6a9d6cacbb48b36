import unittest
from unittest.mock import patch

from sleuth.deadline import Deadline
from sleuth.errors import DeadlineExceeded


class TestDeadline(unittest.TestCase):
    def test_unbounded(self):
        deadline = Deadline()
        self.assertIsNone(deadline.remaining())
        self.assertFalse(deadline.done())
        deadline.check()

    @patch("sleuth.deadline.time.monotonic")
    def test_expiry(self, mock_monotonic):
        mock_monotonic.return_value = 100.0
        deadline = Deadline(30)
        mock_monotonic.return_value = 110.0
        self.assertEqual(deadline.remaining(), 20.0)
        self.assertFalse(deadline.expired())

        mock_monotonic.return_value = 131.0
        self.assertEqual(deadline.remaining(), 0.0)
        self.assertTrue(deadline.expired())
        with self.assertRaisesRegex(DeadlineExceeded, "30s exceeded"):
            deadline.check()

    def test_cancel(self):
        deadline = Deadline(60)
        deadline.cancel()
        self.assertTrue(deadline.cancelled)
        self.assertTrue(deadline.done())
        with self.assertRaisesRegex(DeadlineExceeded, "cancelled"):
            deadline.check()


if __name__ == "__main__":
    unittest.main()
