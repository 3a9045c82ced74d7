"""Tests for the command line logging setup."""
import json
import logging
import unittest

from loanledger.logging_config import JsonFormatter, setup_logging


class TestLoggingSetup(unittest.TestCase):

    def setUp(self):
        self.root = logging.getLogger()
        self.saved = (self.root.handlers[:], self.root.level)

    def tearDown(self):
        handlers, level = self.saved
        self.root.handlers[:] = handlers
        self.root.setLevel(level)

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging("debug")
        setup_logging("warning")
        self.assertEqual(len(self.root.handlers), 1)
        self.assertEqual(self.root.level, logging.WARNING)
        self.assertEqual(logging.getLogger("openpyxl").level, logging.WARNING)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("chatty")
        self.assertEqual(self.root.level, logging.INFO)

    def test_json_lines(self):
        setup_logging("INFO", "json")
        self.assertIsInstance(self.root.handlers[0].formatter, JsonFormatter)

        record = logging.LogRecord("loanledger.engine", logging.ERROR, __file__, 1,
                                   "Group %s failed", ("RRR-1",), None)
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["level"], "ERROR")
        self.assertEqual(payload["logger"], "loanledger.engine")
        self.assertEqual(payload["message"], "Group RRR-1 failed")


if __name__ == '__main__':
    unittest.main()
