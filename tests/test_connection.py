import asyncio
import json
import logging
import unittest

from lemmy_fakes import FakeConnector, settle

from lemmybot.lemmy_client import LemmyAuthError, LemmyCredentials, NotConnectedError
from lemmybot.runtime.connection import ConnectionManager, ConnectionState


class ConnectionManagerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.connector = FakeConnector()
        self.failures = []
        self.errors = []
        self.manager = self._manager()

    def _manager(self, minutes=30, credentials=LemmyCredentials("bot", "hunter2", "test")):
        async def on_frame(text):
            response = json.loads(text)
            if response.get("error"):
                manager.handle_service_error(response["error"], response.get("op"))
            elif response.get("op") == "Login":
                manager.mark_authenticated(response["data"]["jwt"])

        manager = ConnectionManager(
            "lemmy.example",
            credentials=credentials,
            on_frame=on_frame,
            logger=logging.getLogger("lemmybot.test"),
            minutes_before_retry_connection=minutes,
            on_connection_failed=self.failures.append,
            on_connection_error=self.errors.append,
            connect=self.connector,
        )
        return manager

    async def asyncTearDown(self) -> None:
        await self.manager.stop()

    async def _login(self):
        await self.manager.start()
        await settle()
        self.connector.last.feed({"op": "Login", "data": {"jwt": "token-1"}})
        await settle()

    async def test_start_falls_back_to_insecure_and_logs_in(self):
        self.assertTrue(await self.manager.start())
        await settle()
        self.assertEqual(
            self.connector.urls,
            ["wss://lemmy.example/api/v3/ws", "ws://lemmy.example/api/v3/ws"],
        )
        self.assertTrue(self.manager.connected)
        self.assertEqual(self.connector.last.sent_ops(), ["Login"])
        self.assertEqual(self.connector.last.sent[0]["data"]["username_or_email"], "bot")

    async def test_start_is_idempotent(self):
        await self.manager.start()
        await self.manager.start()
        self.assertEqual(len(self.connector.sockets), 1)

    async def test_login_reply_authenticates(self):
        await self._login()
        self.assertTrue(self.manager.authenticated)
        self.assertEqual(self.manager.auth, "token-1")
        self.assertIs(self.manager.state, ConnectionState.AUTHENTICATED)

    async def test_not_authenticated_triggers_relogin_without_closing(self):
        await self._login()
        websocket = self.connector.last
        websocket.feed({"op": "GetReplies", "error": "not_authenticated"})
        await settle()
        self.assertFalse(self.manager.authenticated)
        self.assertTrue(self.manager.connected)
        self.assertFalse(websocket.closed)
        self.assertEqual(websocket.sent_ops(), ["Login", "Login"])

    async def test_bad_credentials_close_connection_for_good(self):
        await self.manager.start()
        await settle()
        websocket = self.connector.last
        websocket.feed({"op": "Login", "error": "bad credentials"})
        with self.assertRaises(LemmyAuthError):
            await asyncio.wait_for(self.manager.wait_closed(), 1)
        self.assertTrue(websocket.closed)
        self.assertFalse(self.manager.connected)
        self.assertFalse(self.manager.reconnect_pending)

    async def test_drop_schedules_single_reconnect(self):
        await self._login()
        self.connector.last.drop()
        await settle()
        self.assertEqual(len(self.errors), 1)
        self.assertFalse(self.manager.connected)
        self.assertIsNone(self.manager.auth)
        self.assertTrue(self.manager.reconnect_pending)
        pending = self.manager._reconnect_task
        self.manager.schedule_reconnect()
        self.assertIs(self.manager._reconnect_task, pending)

    async def test_reconnects_after_backoff(self):
        self.manager = self._manager(minutes=0.001)
        await self.manager.start()
        await settle()
        self.connector.last.drop()
        await asyncio.sleep(0.2)
        self.assertEqual(len(self.connector.sockets), 2)
        self.assertTrue(self.manager.connected)

    async def test_stop_cancels_reconnect_and_allows_restart(self):
        await self._login()
        self.connector.last.drop()
        await settle()
        self.assertTrue(self.manager.reconnect_pending)
        await self.manager.stop()
        self.assertFalse(self.manager.reconnect_pending)
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertTrue(await self.manager.start())
        self.assertTrue(self.manager.connected)
        self.assertEqual(len(self.connector.sockets), 2)

    async def test_requested_stop_does_not_reconnect(self):
        await self._login()
        await self.manager.stop()
        await asyncio.wait_for(self.manager.wait_closed(), 1)
        self.assertFalse(self.manager.reconnect_pending)
        self.assertEqual(self.errors, [])

    async def test_failed_connect_reports_and_retries_later(self):
        self.connector.fail_all = True
        self.assertFalse(await self.manager.start())
        self.assertEqual(len(self.failures), 1)
        self.assertIsInstance(self.failures[0], OSError)
        self.assertTrue(self.manager.reconnect_pending)

    async def test_stop_during_failing_connect_leaves_no_reconnect(self):
        self.connector.fail_all = True
        self.connector.gate = asyncio.Event()
        attempt = asyncio.create_task(self.manager.start())
        await settle()
        await self.manager.stop()
        self.connector.gate.set()
        self.assertFalse(await asyncio.wait_for(attempt, 1))
        self.assertFalse(self.manager.reconnect_pending)
        self.assertEqual(self.failures, [])
        self.assertEqual(self.connector.urls, ["wss://lemmy.example/api/v3/ws"])
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)

    async def test_stop_during_reconnect_attempt_cancels_it(self):
        self.manager = self._manager(minutes=0.001)
        self.connector.fail_all = True
        self.assertFalse(await self.manager.start())
        self.connector.gate = asyncio.Event()
        await asyncio.sleep(0.15)
        self.assertEqual(len(self.connector.urls), 3)
        self.assertTrue(self.manager.reconnect_pending)
        await self.manager.stop()
        self.assertFalse(self.manager.reconnect_pending)
        self.connector.gate.set()
        await asyncio.sleep(0.15)
        self.assertEqual(len(self.connector.urls), 3)
        self.assertEqual(len(self.failures), 1)
        self.assertFalse(self.manager.reconnect_pending)
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)

    async def test_start_after_stop_during_connect_is_not_disturbed(self):
        self.connector.gate = asyncio.Event()
        stale = asyncio.create_task(self.manager.start())
        await settle()
        await self.manager.stop()
        fresh = asyncio.create_task(self.manager.start())
        await settle()
        self.connector.gate.set()
        self.assertFalse(await asyncio.wait_for(stale, 1))
        self.assertTrue(await asyncio.wait_for(fresh, 1))
        self.assertTrue(self.manager.connected)
        self.assertEqual(self.failures, [])

    async def test_send_requires_connection(self):
        with self.assertRaises(NotConnectedError):
            self.manager.send('{"op": "GetPosts", "data": {}}')

    async def test_read_only_bot_does_not_log_in(self):
        self.manager = self._manager(credentials=None)
        await self.manager.start()
        await settle()
        self.assertEqual(self.connector.last.sent, [])
        self.assertTrue(self.manager.ready)


if __name__ == "__main__":
    unittest.main()
