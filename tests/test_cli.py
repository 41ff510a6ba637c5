import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from lemmybot import cli
from lemmybot.runtime.categories import ResourceCategory
from lemmybot.runtime.storage import DedupStore


class CliTests(unittest.TestCase):
    def _run(self, *argv):
        out = io.StringIO()
        with mock.patch("sys.argv", ["lemmybot", *argv]), redirect_stdout(out):
            cli.main()
        return json.loads(out.getvalue())

    def test_init_db_then_storage_info(self):
        with tempfile.TemporaryDirectory() as tmp:
            db_path = str(Path(tmp) / "bot.sqlite3")
            created = self._run("init-db", "--db-path", db_path)
            self.assertIn("posts", created["tables"])

            DedupStore(Path(db_path)).upsert(ResourceCategory.POST, 5, 10)
            info = self._run("storage-info", "post", "5", "--db-path", db_path)
            self.assertTrue(info["exists"])
            self.assertIsNotNone(info["reprocess_time"])

            missing = self._run("storage-info", "comment", "5", "--db-path", db_path)
            self.assertFalse(missing["exists"])

    def test_run_passes_logging_handlers(self):
        with mock.patch("lemmybot.cli.run_bot") as run_bot, mock.patch("sys.argv", ["lemmybot", "run", "--category", "mention"]):
            cli.main()
        handlers = run_bot.call_args.args[0]
        self.assertEqual(list(handlers), ["mention"])


if __name__ == "__main__":
    unittest.main()
