from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
import unittest

from _support import ROOT

from order_sheet.errors import AttemptTimedOut
from order_sheet.racing import race


class RaceTests(unittest.TestCase):
    def test_fast_call_returns_its_value(self):
        self.assertEqual(race(lambda: 5, 2.0, "fast"), 5)

    def test_no_timeout_runs_inline(self):
        caller = threading.current_thread()
        self.assertIs(race(threading.current_thread, None), caller)

    def test_slow_call_loses_to_the_timer(self):
        release = threading.Event()
        try:
            started = time.monotonic()
            with self.assertRaises(AttemptTimedOut) as ctx:
                race(lambda: release.wait(5), 0.05, "primary")
            self.assertLess(time.monotonic() - started, 2.0)
            self.assertEqual(ctx.exception.label, "primary")
            self.assertIn("primary timed out", str(ctx.exception))
        finally:
            release.set()

    def test_abandoned_call_does_not_hold_up_process_exit(self):
        script = (
            "import time\n"
            "from order_sheet.errors import AttemptTimedOut\n"
            "from order_sheet.racing import race\n"
            "try:\n"
            "    race(lambda: time.sleep(30), 0.1, 'stuck')\n"
            "except AttemptTimedOut:\n"
            "    print('timed out')\n"
        )
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))
        started = time.monotonic()
        proc = subprocess.run(
            [sys.executable, "-c", script], cwd=ROOT, capture_output=True, text=True, env=env, timeout=25
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), "timed out")
        self.assertLess(time.monotonic() - started, 15.0)

    def test_exceptions_from_the_call_propagate(self):
        with self.assertRaises(ZeroDivisionError):
            race(lambda: 1 / 0, 2.0)


if __name__ == "__main__":
    unittest.main()
