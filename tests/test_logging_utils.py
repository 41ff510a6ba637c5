import logging
import tempfile
import unittest
from pathlib import Path

from lemmybot.runtime.config import BotConfig
from lemmybot.runtime.logging_utils import ColorFormatter, setup_logging


def _record(level, message):
    return logging.LogRecord("lemmybot.runtime", level, __file__, 1, message, None, None)


class ColorFormatterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.formatter = ColorFormatter(fmt="%(message)s")

    def test_lifecycle_lines_are_tagged(self):
        self.assertIn("[CONNECTED]", self.formatter.format(_record(logging.INFO, "Connected to Lemmy instance url=x")))
        self.assertIn("[RECONNECT]", self.formatter.format(_record(logging.INFO, "Reconnect scheduled instance=x")))
        self.assertIn("[DISPATCH]", self.formatter.format(_record(logging.INFO, "Dispatched category=post")))

    def test_state_transitions_use_plain_level_colour(self):
        painted = self.formatter.format(_record(logging.DEBUG, "Connection state connecting -> connected"))
        self.assertEqual(painted, "\033[36mConnection state connecting -> connected\033[0m")


class SetupLoggingTests(unittest.TestCase):
    def test_file_handler_writes_log_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp) / "logs" / "bot.log"
            logger = setup_logging(BotConfig(instance="lemmy.example", log_path=log_path))
            try:
                logger.info("Logged in instance=lemmy.example")
                for handler in logger.handlers:
                    handler.flush()
                self.assertIn("Logged in instance=lemmy.example", log_path.read_text(encoding="utf-8"))
            finally:
                for handler in list(logger.handlers):
                    handler.close()
                    logger.removeHandler(handler)


if __name__ == "__main__":
    unittest.main()
