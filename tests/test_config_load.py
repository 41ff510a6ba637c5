import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from lemmybot.lemmy_client import LemmyAuthError
from lemmybot.runtime.config import BotConfig, load_config, parse_instance_entry
from lemmybot.runtime.federation import ConfigError, FederationOptions, InstanceFederationOptions


class ConfigLoadTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        patcher = mock.patch(
            "lemmybot.lemmy_client.CREDENTIALS_PATH", Path(self._tmp.name) / "missing.json"
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_load_config_defaults(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.instance, "localhost:8536")
        self.assertIsNone(cfg.credentials)
        self.assertIsNone(cfg.db_path)
        self.assertEqual(cfg.seconds_between_polls, 10)
        self.assertEqual(cfg.minutes_before_retry_connection, 5)
        self.assertIsNone(cfg.minutes_until_reprocess)
        self.assertEqual(cfg.federation, "local")

    def test_load_config_from_env(self) -> None:
        env = {
            "LEMMY_INSTANCE": "https://Lemmy.Example/",
            "LEMMY_USERNAME": "bot",
            "LEMMY_PASSWORD": "hunter2",
            "LEMMY_DB_PATH": str(Path(self._tmp.name) / "bot.sqlite3"),
            "LEMMY_SECONDS_BETWEEN_POLLS": "30",
            "LEMMY_MINUTES_UNTIL_REPROCESS": "60",
            "LEMMY_FEDERATION": "allow",
            "LEMMY_FEDERATION_LIST": "news+memes@alpha.example, beta.example",
            "LEMMY_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.instance, "lemmy.example")
        self.assertEqual(cfg.credentials.username, "bot")
        self.assertEqual(cfg.seconds_between_polls, 30)
        self.assertEqual(cfg.minutes_until_reprocess, 60.0)
        self.assertEqual(cfg.log_level, "DEBUG")
        self.assertEqual(
            cfg.federation,
            FederationOptions(
                allow_list=[
                    InstanceFederationOptions(instance="alpha.example", communities=["news", "memes"]),
                    "beta.example",
                ]
            ),
        )

    def test_username_without_password_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"LEMMY_USERNAME": "bot"}, clear=True):
            with self.assertRaises(LemmyAuthError):
                load_config()

    def test_unknown_federation_mode_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"LEMMY_FEDERATION": "sometimes"}, clear=True):
            with self.assertRaises(ConfigError):
                load_config()

    def test_invalid_intervals_are_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            BotConfig(instance="lemmy.example", seconds_between_polls=0)
        with self.assertRaises(ConfigError):
            BotConfig(instance="lemmy.example", minutes_before_retry_connection=0)

    def test_parse_instance_entry(self) -> None:
        self.assertEqual(parse_instance_entry("Alpha.Example"), "alpha.example")
        self.assertEqual(
            parse_instance_entry("news@alpha.example"),
            InstanceFederationOptions(instance="alpha.example", communities=["news"]),
        )


if __name__ == "__main__":
    unittest.main()
