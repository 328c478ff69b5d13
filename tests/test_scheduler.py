import asyncio
import signal
import unittest
from unittest.mock import patch

from payments import scheduler


class SchedulerTests(unittest.TestCase):
    def test_midnight_shutdown_signals_own_process(self) -> None:
        with patch("payments.scheduler.os.kill") as kill, patch(
            "payments.scheduler.os.getpid", return_value=4321
        ):
            asyncio.run(scheduler.midnight_shutdown())
        kill.assert_called_once_with(4321, signal.SIGTERM)

    def test_disabled_scheduler_is_not_started(self) -> None:
        with patch.object(scheduler.settings, "shutdown_at_midnight", False), patch.object(
            scheduler.scheduler, "start"
        ) as start:
            scheduler.start_scheduler()
        start.assert_not_called()


if __name__ == "__main__":
    unittest.main()
