from __future__ import annotations

import json
import logging
import unittest

from shift_attendance.logging_utils import JsonFormatter


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_are_flattened(self) -> None:
        record = logging.makeLogRecord(
            {
                "name": "shift_attendance.attendance",
                "levelno": logging.INFO,
                "levelname": "INFO",
                "msg": "punch_recorded",
                "user_id": "alice",
                "flags": ["TIME_DRIFT"],
            }
        )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "punch_recorded")
        self.assertEqual(payload["logger"], "shift_attendance.attendance")
        self.assertEqual(payload["user_id"], "alice")
        self.assertEqual(payload["flags"], ["TIME_DRIFT"])
        self.assertNotIn("levelno", payload)
        self.assertNotIn("msg", payload)

    def test_non_ascii_is_kept(self) -> None:
        record = logging.makeLogRecord({"msg": "shift_clause_unparseable", "clause": "٥ مساء"})
        self.assertIn("٥ مساء", JsonFormatter().format(record))


if __name__ == "__main__":
    unittest.main()
