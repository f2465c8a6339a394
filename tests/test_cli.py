from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory
import json
import logging
import unittest

from washremind.cli import build_parser, main


class CliParserTest(unittest.TestCase):
    def test_worker_flags(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "washremind.yaml", "worker", "--count", "3", "--once"])
        self.assertEqual(args.command, "worker")
        self.assertEqual(args.count, 3)
        self.assertTrue(args.once)

    def test_list_rejects_unknown_state(self) -> None:
        parser = build_parser()
        with redirect_stderr(StringIO()), self.assertRaises(SystemExit):
            parser.parse_args(["--config", "washremind.yaml", "list", "--state", "lost"])


class CliCommandTest(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.config_path = self.root / "washremind.yaml"
        self.config_path.write_text("paths:\n  db: ./washremind.db\n  log: ./logs/washremind.log\n", encoding="utf-8")

    def tearDown(self) -> None:
        logger = logging.getLogger("washremind")
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        self.temp_dir.cleanup()

    def run_cli(self, *argv: str) -> tuple[int, str, str]:
        stdout, stderr = StringIO(), StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(["--config", str(self.config_path), *argv])
        return code, stdout.getvalue(), stderr.getvalue()

    def write_booking(self, **overrides: object) -> Path:
        data = {
            "customerName": "Sam Taylor",
            "customerEmail": "sam@example.com",
            "packageName": "Full Valet",
            "extras": ["Pet Hair"],
            "date": "2099-06-01",
            "time": "10:00",
            "estimatedTime": "2 hours",
        }
        data.update(overrides)
        path = self.root / "booking.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def test_schedule_list_and_cancel(self) -> None:
        code, out, _ = self.run_cli("schedule", "--booking", str(self.write_booking()))
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("scheduled "))
        job_id = out.split()[1]

        code, out, _ = self.run_cli("list", "--state", "pending")
        self.assertEqual(code, 0)
        self.assertIn(job_id, out)

        code, out, _ = self.run_cli("cancel", "--job-id", job_id)
        self.assertEqual((code, out.strip()), (0, f"cancelled {job_id}"))

        code, _, err = self.run_cli("cancel", "--job-id", job_id)
        self.assertEqual(code, 2)
        self.assertIn("cancelled", err)

        code, out, _ = self.run_cli("status")
        self.assertEqual(code, 0)
        self.assertRegex(out, r"cancelled\s+1")

    def test_schedule_too_soon_is_skipped(self) -> None:
        code, out, _ = self.run_cli("schedule", "--booking", str(self.write_booking(date="2001-01-01")))
        self.assertEqual((code, out.strip()), (0, "skipped: too soon"))

    def test_schedule_invalid_booking(self) -> None:
        code, _, err = self.run_cli("schedule", "--booking", str(self.write_booking(time="noon")))
        self.assertEqual(code, 2)
        self.assertIn("invalid booking", err)

    def test_cancel_unknown_job(self) -> None:
        code, _, err = self.run_cli("cancel", "--job-id", "nope")
        self.assertEqual(code, 2)
        self.assertIn("job not found", err)


if __name__ == "__main__":
    unittest.main()
