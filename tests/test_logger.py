import unittest
import logging
import os
import sys
import tempfile
from pathlib import Path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from src.logger import NO_REQUEST, current_request_id, request_context, setup_logging


class TestLogger(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = logging.getLogger()
        self.saved_handlers = self.root.handlers[:]
        self.saved_level = self.root.level

    def tearDown(self):
        for handler in self.root.handlers[:]:
            self.root.removeHandler(handler)
            handler.close()
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)
        self.tmp.cleanup()

    def test_writes_to_timestamped_file(self):
        log_dir = Path(self.tmp.name) / "logs"
        logger, log_filepath = setup_logging(log_dir)

        logging.getLogger("src.orchestrator").info("converted something")
        for handler in logger.handlers:
            handler.flush()

        self.assertTrue(log_filepath.name.startswith("run_"))
        self.assertIn("converted something", log_filepath.read_text(encoding="utf-8"))
        self.assertEqual(logging.getLogger("PIL").level, logging.WARNING)

    def test_archives_previous_logs(self):
        log_dir = Path(self.tmp.name) / "logs"
        log_dir.mkdir()
        old_log = log_dir / "run_20200101_000000.log"
        old_log.write_text("old run")

        setup_logging(log_dir)

        self.assertFalse(old_log.exists())
        self.assertTrue((log_dir / "archive" / old_log.name).exists())

    def test_records_carry_request_id(self):
        log_dir = Path(self.tmp.name) / "logs"
        logger, log_filepath = setup_logging(log_dir)

        with request_context("abcd1234") as request_id:
            logging.getLogger("src.orchestrator").info("inside request")
        logging.getLogger("src.orchestrator").info("outside request")
        for handler in logger.handlers:
            handler.flush()

        lines = log_filepath.read_text(encoding="utf-8").splitlines()
        self.assertEqual(request_id, "abcd1234")
        self.assertIn("[abcd1234]", next(line for line in lines if "inside request" in line))
        self.assertIn(f"[{NO_REQUEST}]", next(line for line in lines if "outside request" in line))

    def test_request_context_generates_and_restores_id(self):
        with request_context() as outer:
            self.assertEqual(len(outer), 8)
            with request_context() as inner:
                self.assertNotEqual(inner, outer)
                self.assertEqual(current_request_id(), inner)
            self.assertEqual(current_request_id(), outer)
        self.assertEqual(current_request_id(), NO_REQUEST)

    def test_archive_keeps_only_newest_logs(self):
        log_dir = Path(self.tmp.name) / "logs"
        archive = log_dir / "archive"
        archive.mkdir(parents=True)
        for day in range(1, 5):
            (archive / f"run_2020010{day}_000000.log").write_text("old run")

        setup_logging(log_dir, keep_archived=2)

        self.assertEqual(sorted(p.name for p in archive.iterdir()),
                         ["run_20200103_000000.log", "run_20200104_000000.log"])

if __name__ == '__main__':
    unittest.main()
