import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from dbbackup.config import ConfigurationError
from dbbackup.triggers import (
    ScheduleStatus,
    next_run,
    run_http_backup,
    run_scheduled_backup,
)


class RunHttpBackupTests(unittest.TestCase):
    def test_success(self):
        backup = MagicMock(return_value=[])
        self.assertEqual(run_http_backup(backup), (200, "Backup completed successfully"))
        backup.assert_called_once_with()

    def test_failure_returns_error_message(self):
        backup = MagicMock(side_effect=RuntimeError("Unknown database 'aw'"))
        self.assertEqual(run_http_backup(backup), (400, "Unknown database 'aw'"))

    def test_configuration_error_message(self):
        backup = MagicMock(
            side_effect=ConfigurationError(
                "Missing required environment variable: MYSQL_CONNECTION",
                variable="MYSQL_CONNECTION",
            )
        )
        status, body = run_http_backup(backup)
        self.assertEqual(status, 400)
        self.assertEqual(body, "Missing required environment variable: MYSQL_CONNECTION")


class RunScheduledBackupTests(unittest.TestCase):
    def test_success(self):
        backup = MagicMock()
        schedule = ScheduleStatus(next=datetime(2024, 3, 6, 17, tzinfo=timezone.utc))
        with self.assertLogs("dbbackup.triggers", level="INFO") as logs:
            self.assertTrue(run_scheduled_backup("daily", backup, schedule))
        self.assertTrue(any("Next timer schedule" in line for line in logs.output))

    def test_failure_is_logged_not_raised(self):
        backup = MagicMock(side_effect=RuntimeError("connection refused"))
        with self.assertLogs("dbbackup.triggers", level="ERROR") as logs:
            self.assertFalse(run_scheduled_backup("monthly", backup))
        self.assertIn("connection refused", logs.output[0])


class NextRunTests(unittest.TestCase):
    def test_daily(self):
        after = datetime(2024, 3, 5, 17, 0, 9, tzinfo=timezone.utc)
        self.assertEqual(
            next_run("0 17 * * *", after), datetime(2024, 3, 6, 17, 0, tzinfo=timezone.utc)
        )

    def test_monthly(self):
        after = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(
            next_run("0 21 1 * *", after), datetime(2024, 4, 1, 21, 0, tzinfo=timezone.utc)
        )

    def test_naive_input_treated_as_utc(self):
        self.assertEqual(
            next_run("0 17 * * *", datetime(2024, 3, 5, 16, 0)),
            datetime(2024, 3, 5, 17, 0, tzinfo=timezone.utc),
        )


if __name__ == "__main__":
    unittest.main()
