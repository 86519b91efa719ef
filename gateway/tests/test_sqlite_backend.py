import os
import sqlite3
import tempfile
import unittest

from labourlink_chat.notifications import InAppNotifier, SQLiteNotificationStore
from labourlink_chat.projector import CLOSED_PLACEHOLDER_TEXT
from labourlink_chat.sessions import SQLiteSessionStore
from labourlink_chat.sqlite_backend import SCHEMA_VERSION, SQLiteBackend
from labourlink_chat.sqlite_closures import SQLiteThreadClosureStore
from labourlink_chat.sqlite_cursors import SQLiteReadCursorStore
from labourlink_chat.sqlite_message_log import SQLiteMessageLog

from tests.chat_fixtures import BUILDER, LABOURER, FakeClock, make_service


class SQLiteBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "chat.db")
        self.backend = SQLiteBackend(self.db_path)

    def tearDown(self) -> None:
        self.backend.close()
        self.tmpdir.cleanup()

    def _reopen(self) -> SQLiteBackend:
        self.backend.close()
        self.backend = SQLiteBackend(self.db_path)
        return self.backend

    def test_schema_version_is_recorded(self):
        version = self.backend.connection.execute("PRAGMA user_version").fetchone()[0]
        self.assertEqual(version, SCHEMA_VERSION)
        tables = {
            row[0]
            for row in self.backend.connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        self.assertTrue({"messages", "read_cursors", "thread_closures", "sessions", "notifications"} <= tables)

    def test_latest_timestamp_lookup_uses_index(self):
        plan = self.backend.connection.execute(
            "EXPLAIN QUERY PLAN SELECT MAX(created_at) FROM messages"
        ).fetchall()
        details = " ".join(str(row[3]) for row in plan)
        self.assertIn("messages_created", details)

    def test_unknown_schema_version_is_rejected(self):
        self.backend.close()
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA user_version = 99")
        conn.close()

        with self.assertRaises(ValueError):
            self.backend = SQLiteBackend(self.db_path)
        self.backend = SQLiteBackend(os.path.join(self.tmpdir.name, "fresh.db"))

    def test_sessions_expire_and_survive_restart(self):
        clock = FakeClock(start_ms=1_000)
        sessions = SQLiteSessionStore(self.backend, ttl_ms=60_000, now_func=clock.now)
        session = sessions.create(" LA@x.com ")
        self.assertEqual(session.email, LABOURER)

        sessions = SQLiteSessionStore(self._reopen(), ttl_ms=60_000, now_func=clock.now)
        loaded = sessions.get_by_session(session.session_token)
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.email, LABOURER)

        clock.advance(61)
        self.assertIsNone(sessions.get_by_session(session.session_token))
        clock.set(1_000)
        self.assertIsNone(sessions.get_by_session(session.session_token))

    def test_walkthrough_survives_restart(self):
        clock = FakeClock()

        def durable_service(backend, store):
            return make_service(
                clock,
                log=SQLiteMessageLog(backend),
                cursors=SQLiteReadCursorStore(backend),
                closures=SQLiteThreadClosureStore(backend),
                notifier=InAppNotifier(store, now_func=clock.now),
            )

        notifications = SQLiteNotificationStore(self.backend)
        service = durable_service(self.backend, notifications)
        clock.set(100)
        service.send_message(BUILDER, LABOURER, "Hi")
        clock.set(150)
        service.mark_read(LABOURER, BUILDER)
        clock.set(200)
        service.close_thread(BUILDER, LABOURER)

        backend = self._reopen()
        notifications = SQLiteNotificationStore(backend)
        service = durable_service(backend, notifications)

        self.assertEqual(service.list_threads(BUILDER, "active"), [])
        [closed] = service.list_threads(BUILDER, "history")
        self.assertEqual((closed.last_message_text, closed.last_message_at), (CLOSED_PLACEHOLDER_TEXT, 200))

        clock.set(250)
        service.send_message(LABOURER, BUILDER, "Still keen?")
        [reopened] = service.list_threads(BUILDER, "active")
        self.assertEqual((reopened.last_message_at, reopened.unread_count), (250, 1))
        self.assertEqual([m.text for m in service.get_conversation(BUILDER, LABOURER)], ["Hi", "Still keen?"])

        [for_labourer] = notifications.list_for(LABOURER)
        self.assertEqual(for_labourer.data["peerEmail"], BUILDER)
        self.assertTrue(notifications.mark_read(LABOURER, for_labourer.id))
        self.assertTrue(notifications.list_for(LABOURER)[0].is_read)
        self.assertEqual(len(notifications.list_for(BUILDER)), 1)


if __name__ == "__main__":
    unittest.main()
