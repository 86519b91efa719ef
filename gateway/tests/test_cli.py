import io
import json
import os
import tempfile
import unittest

from labourlink_chat.cli import _load_frames, main, simulate
from labourlink_chat.sessions import SQLiteSessionStore
from labourlink_chat.sqlite_backend import SQLiteBackend


def _users():
    return [
        {"op": "user", "email": "bo@x.com", "role": "builder", "display_name": "Bo"},
        {"op": "user", "email": "la@x.com", "role": "labourer"},
    ]


def _run(frames):
    buffer = io.StringIO()
    simulate(frames, buffer)
    return [json.loads(line) for line in buffer.getvalue().splitlines()]


class SimulateTests(unittest.TestCase):
    def test_load_frames_accepts_array_object_or_lines(self):
        array_buffer = io.StringIO(json.dumps([{"op": "threads"}]))
        object_buffer = io.StringIO(json.dumps({"op": "threads"}))
        ndjson_buffer = io.StringIO("\n".join(['{"op": "send"}', "", '{"op": "read"}']))

        self.assertEqual(list(_load_frames(array_buffer)), [{"op": "threads"}])
        self.assertEqual(list(_load_frames(object_buffer)), [{"op": "threads"}])
        self.assertEqual(list(_load_frames(ndjson_buffer)), [{"op": "send"}, {"op": "read"}])
        self.assertEqual(list(_load_frames(io.StringIO("  "))), [])

    def test_walkthrough_lines(self):
        frames = _users() + [
            {"op": "send", "at": 100, "from": "bo@x.com", "to": "la@x.com", "text": "Hi"},
            {"op": "threads", "viewer": "la@x.com"},
            {"op": "read", "at": 150, "viewer": "la@x.com", "peer": "bo@x.com"},
            {"op": "close", "at": 200, "owner": "bo@x.com", "peer": "la@x.com"},
            {"op": "threads", "viewer": "bo@x.com", "view": "active"},
            {"op": "threads", "viewer": "bo@x.com", "view": "history"},
            {"op": "send", "at": 250, "from": "la@x.com", "to": "bo@x.com", "text": "Still keen?"},
            {"op": "threads", "viewer": "bo@x.com"},
        ]

        lines = _run(frames)

        self.assertTrue(all(line["ok"] for line in lines))
        self.assertEqual(lines[2]["message"]["createdAt"], 100)
        self.assertEqual(lines[3]["threads"][0]["unreadCount"], 1)
        self.assertEqual(lines[4]["lastReadAt"], 150)
        self.assertEqual(lines[5]["closedAt"], 200)
        self.assertEqual(lines[6]["threads"], [])
        self.assertEqual(lines[7]["threads"][0]["lastMessageText"], "Chat closed")
        reopened = lines[9]["threads"][0]
        self.assertEqual((reopened["lastMessageText"], reopened["lastMessageAt"]), ("Still keen?", 250))

    def test_errors_are_reported_per_frame(self):
        frames = _users() + [
            {"op": "send", "at": 10, "from": "bo@x.com", "to": "bo@x.com", "text": "me"},
            {"op": "send", "at": 10, "from": "bo@x.com", "to": "la@x.com", "text": "ok"},
        ]

        lines = _run(frames)

        self.assertEqual(lines[2], {"op": "send", "ok": False, "error": "Cannot message yourself."})
        self.assertTrue(lines[3]["ok"])

    def test_typing_frames(self):
        frames = _users() + [
            {"op": "typing", "at": 1_000, "from": "bo@x.com", "to": "la@x.com", "is_typing": True},
            {"op": "get_typing", "at": 5_000, "viewer": "la@x.com", "peer": "bo@x.com"},
            {"op": "get_typing", "at": 11_001, "viewer": "la@x.com", "peer": "bo@x.com"},
        ]

        lines = _run(frames)

        self.assertTrue(lines[3]["peerTyping"])
        self.assertFalse(lines[4]["peerTyping"])


class IssueSessionTests(unittest.TestCase):
    def test_issue_session_prints_token(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "chat.db")
            buffer = io.StringIO()

            exit_code = main(["issue-session", "LA@x.com", "--db", db_path], output=buffer)

            self.assertEqual(exit_code, 0)
            token = buffer.getvalue().strip()
            self.assertTrue(token.startswith("st_"))
            backend = SQLiteBackend(db_path)
            try:
                session = SQLiteSessionStore(backend).get_by_session(token)
            finally:
                backend.close()
            self.assertEqual(session.email, "la@x.com")


if __name__ == "__main__":
    unittest.main()
