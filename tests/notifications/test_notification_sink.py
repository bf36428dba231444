import asyncio
import unittest

from src.backend.notifications import NotificationKind, StoredNotificationSink
from src.backend.store import DocumentStore


class TestStoredNotificationSink(unittest.TestCase):
    def setUp(self):
        self.sink = StoredNotificationSink(store=DocumentStore())

        async def seed():
            await self.sink.notify("bob", NotificationKind.SHARE_RECEIVED, "Alice shared Sunset", related_id="share-1")
            await self.sink.notify("bob", NotificationKind.SHARE_REJECTED, "Carol rejected Forest")
            await self.sink.notify("alice", NotificationKind.SHARE_ACCEPTED, "Bob accepted Sunset", related_id="share-1")

        asyncio.run(seed())

    def test_listing_is_per_user(self):
        bob = self.sink.list_for_user("bob")
        self.assertEqual(len(bob), 2)
        self.assertEqual({n.kind for n in bob}, {NotificationKind.SHARE_RECEIVED, NotificationKind.SHARE_REJECTED})
        self.assertEqual(self.sink.unread_count("alice"), 1)

    def test_mark_read_only_for_owner(self):
        notification = self.sink.list_for_user("alice")[0]
        self.assertEqual(notification.related_id, "share-1")

        self.assertFalse(self.sink.mark_read(notification.id, "bob"))
        self.assertTrue(self.sink.mark_read(notification.id, "alice"))
        self.assertEqual(self.sink.unread_count("alice"), 0)
        self.assertFalse(self.sink.mark_read("missing", "alice"))

    def test_mark_all_read(self):
        self.assertEqual(self.sink.mark_all_read("bob"), 2)
        self.assertEqual(self.sink.unread_count("bob"), 0)
        self.assertEqual(self.sink.list_for_user("bob", unread_only=True), [])
        self.assertEqual(self.sink.unread_count("alice"), 1)


if __name__ == "__main__":
    unittest.main()
