import threading
import unittest

from sheetcal.guard import ReconcileGuard


class ReconcileGuardTests(unittest.TestCase):
    def test_hold_acquires_and_releases(self) -> None:
        guard = ReconcileGuard(wait_seconds=0.1)
        with guard.hold() as acquired:
            self.assertTrue(acquired)
            self.assertTrue(guard.locked())
        self.assertFalse(guard.locked())

    def test_contended_hold_gives_up_after_wait(self) -> None:
        guard = ReconcileGuard(wait_seconds=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with guard.hold():
                held.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(timeout=5)
        try:
            with guard.hold() as acquired:
                self.assertFalse(acquired)
        finally:
            release.set()
            thread.join(timeout=5)
        self.assertFalse(guard.locked())

    def test_lock_released_when_body_raises(self) -> None:
        guard = ReconcileGuard(wait_seconds=0.05)
        with self.assertRaises(RuntimeError):
            with guard.hold():
                raise RuntimeError("boom")
        self.assertFalse(guard.locked())
        with guard.hold(wait_seconds=0) as acquired:
            self.assertTrue(acquired)


if __name__ == "__main__":
    unittest.main()
