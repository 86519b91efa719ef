import unittest

from labourlink_chat.closures import ThreadClosureStore
from labourlink_chat.cursors import ReadCursorStore
from labourlink_chat.errors import ValidationError
from labourlink_chat.message_log import MessageLog
from labourlink_chat.projector import CLOSED_PLACEHOLDER_TEXT, ThreadProjector

BO = "bo@x.com"
LA = "la@x.com"
LOU = "lou@x.com"


class CountingLog(MessageLog):
    def __init__(self) -> None:
        super().__init__()
        self.list_calls = 0

    def list_for_user(self, email):
        self.list_calls += 1
        return super().list_for_user(email)


class ThreadProjectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.log = CountingLog()
        self.cursors = ReadCursorStore()
        self.closures = ThreadClosureStore()
        self.projector = ThreadProjector(self.log, self.cursors, self.closures)

    def summaries(self, viewer, mode="active"):
        return [
            (t.peer_email, t.last_message_text, t.last_message_at, t.unread_count)
            for t in self.projector.project(viewer, mode)
        ]

    def test_one_thread_per_peer_sorted_newest_first(self):
        self.log.append(BO, LA, "hi la", 100)
        self.log.append(LOU, BO, "hi bo", 150)
        self.log.append(LA, BO, "reply", 200)

        threads = self.projector.project(BO)

        self.assertEqual([t.peer_email for t in threads], [LA, LOU])
        self.assertEqual(threads[0].thread_id, "bo@x.com__la@x.com")
        self.assertEqual(self.summaries(BO), [(LA, "reply", 200, 1), (LOU, "hi bo", 150, 1)])
        self.assertEqual(self.log.list_calls, 1)

    def test_unread_counts_only_incoming_after_cursor(self):
        self.log.append(BO, LA, "one", 100)
        self.log.append(BO, LA, "two", 110)
        self.log.append(LA, BO, "mine", 120)
        self.log.append(BO, LA, "three", 130)
        self.cursors.mark_read(LA, BO, 110)

        self.assertEqual(self.summaries(LA), [(BO, "three", 130, 1)])
        self.assertEqual(self.summaries(BO), [(LA, "three", 130, 1)])

    def test_closed_thread_leaves_active_for_both_sides(self):
        self.log.append(BO, LA, "Hi", 100)
        self.closures.close(BO, LA, 200)

        self.assertEqual(self.summaries(BO), [])
        self.assertEqual(self.summaries(LA), [])

    def test_history_placeholder_for_closed_without_new_activity(self):
        self.log.append(BO, LA, "Hi", 100)
        self.closures.close(BO, LA, 200)

        self.assertEqual(self.summaries(BO, "history"), [(LA, CLOSED_PLACEHOLDER_TEXT, 200, 0)])
        self.assertEqual(self.summaries(LA, "history"), [(BO, CLOSED_PLACEHOLDER_TEXT, 200, 0)])

    def test_history_placeholder_when_closed_with_no_messages(self):
        self.closures.close(BO, LOU, 75)
        self.assertEqual(self.summaries(BO, "history"), [(LOU, CLOSED_PLACEHOLDER_TEXT, 75, 0)])
        self.assertEqual(self.summaries(BO), [])

    def test_new_message_reopens_and_supersedes_placeholder(self):
        self.log.append(BO, LA, "Hi", 100)
        self.closures.close(BO, LA, 200)
        self.log.append(LA, BO, "back again", 250)

        self.assertEqual(self.summaries(BO), [(LA, "back again", 250, 1)])
        self.assertEqual(self.summaries(LA), [(BO, "back again", 250, 0)])
        # Ever-closed threads stay in history while active again.
        self.assertEqual(self.summaries(BO, "history"), [(LA, "back again", 250, 0)])

    def test_message_at_boundary_does_not_reopen(self):
        self.log.append(BO, LA, "Hi", 100)
        self.closures.close(BO, LA, 200)
        self.log.append(LA, BO, "same ms", 200)

        self.assertEqual(self.summaries(BO), [])
        self.assertEqual(self.summaries(BO, "history"), [(LA, CLOSED_PLACEHOLDER_TEXT, 200, 0)])

    def test_unread_ignores_messages_before_boundary(self):
        self.log.append(BO, LA, "old 1", 100)
        self.log.append(BO, LA, "old 2", 110)
        self.closures.close(LA, BO, 150)
        self.log.append(BO, LA, "new", 160)

        self.assertEqual(self.summaries(LA), [(BO, "new", 160, 1)])

    def test_closure_only_affects_that_pair(self):
        self.log.append(BO, LA, "to la", 100)
        self.log.append(BO, LOU, "to lou", 110)
        self.closures.close(BO, LA, 120)

        self.assertEqual([t[0] for t in self.summaries(BO)], [LOU])
        self.assertEqual([t[0] for t in self.summaries(BO, "history")], [LA])
        self.assertEqual([t[0] for t in self.summaries(LOU, "history")], [])

    def test_history_sorted_by_last_message_at(self):
        self.log.append(BO, LA, "la", 100)
        self.log.append(BO, LOU, "lou", 110)
        self.closures.close(BO, LOU, 300)
        self.closures.close(BO, LA, 200)
        self.log.append(LA, BO, "la again", 400)

        self.assertEqual(
            self.summaries(BO, "history"),
            [(LA, "la again", 400, 0), (LOU, CLOSED_PLACEHOLDER_TEXT, 300, 0)],
        )

    def test_unknown_mode_rejected(self):
        with self.assertRaises(ValidationError):
            self.projector.project(BO, "archived")

    def test_viewer_is_normalized(self):
        self.log.append(BO, LA, "Hi", 100)
        self.assertEqual([t.peer_email for t in self.projector.project(" LA@X.COM ")], [BO])


if __name__ == "__main__":
    unittest.main()
