import io
import threading
import unittest

from cachectl.keys import KeyChannel, enumerate_keys, produce, read_keys
from cachectl.progress import ProgressTracker

from stubs import StubStore, quiet_console


class TestReadKeys(unittest.TestCase):
    def test_one_key_per_line(self) -> None:
        stream = io.StringIO("a.jpg\r\nb/c.png\n\n\nd.pdf")
        self.assertEqual(list(read_keys(stream)), ["a.jpg", "b/c.png", "d.pdf"])

    def test_keeps_surrounding_spaces(self) -> None:
        stream = io.StringIO("  b/c.png \nphotos/cover.jpg \n")
        self.assertEqual(list(read_keys(stream)), ["  b/c.png ", "photos/cover.jpg "])


class TestEnumerateKeys(unittest.TestCase):
    def test_yields_every_key_of_every_page(self) -> None:
        store = StubStore(pages={"bucket": [["a", "b"], ["c"], []]})
        tracker = ProgressTracker(console=quiet_console())

        keys = list(enumerate_keys(store, "bucket", tracker, page_size=2, start_after="0"))

        self.assertEqual(keys, ["a", "b", "c"])
        self.assertEqual(
            store.list_calls,
            [{"bucket": "bucket", "page_size": 2, "start_after": "0"}],
        )

    def test_stops_after_page_once_cap_reached(self) -> None:
        store = StubStore(pages={"bucket": [["a", "b"], ["c", "d"], ["e"]]})
        tracker = ProgressTracker(max_objects=1, console=quiet_console())

        seen = []
        for key in enumerate_keys(store, "bucket", tracker):
            seen.append(key)
            tracker.record(key, "g", "image/png", copied=True)

        self.assertEqual(seen, ["a", "b"])


class TestKeyChannel(unittest.TestCase):
    def test_close_drains_then_returns_none(self) -> None:
        channel = KeyChannel(4)
        self.assertTrue(channel.put("a"))
        self.assertTrue(channel.put("b"))
        channel.close()

        self.assertEqual(channel.get(), "a")
        self.assertEqual(channel.get(), "b")
        self.assertIsNone(channel.get())

    def test_put_blocks_until_consumed(self) -> None:
        channel = KeyChannel(1)
        channel.put("a")
        done = threading.Event()

        def _producer() -> None:
            channel.put("b")
            done.set()

        thread = threading.Thread(target=_producer)
        thread.start()
        self.assertFalse(done.wait(0.5))
        self.assertEqual(channel.get(), "a")
        self.assertTrue(done.wait(2))
        thread.join()
        self.assertEqual(channel.get(), "b")

    def test_abort_releases_blocked_producer(self) -> None:
        channel = KeyChannel(1)
        channel.put("a")
        results = []
        thread = threading.Thread(target=lambda: results.append(channel.put("b")))
        thread.start()
        channel.abort()
        thread.join(2)

        self.assertEqual(results, [False])
        self.assertIsNone(channel.get())


class TestProduce(unittest.TestCase):
    def test_closes_channel_when_exhausted(self) -> None:
        channel = KeyChannel(10)
        self.assertEqual(produce(["a", "b"], channel), 2)
        self.assertEqual([channel.get(), channel.get(), channel.get()], ["a", "b", None])

    def test_closes_channel_when_listing_fails(self) -> None:
        def _keys():
            yield "a"
            raise RuntimeError("listing broke")

        channel = KeyChannel(10)
        with self.assertLogs("cachectl.keys", level="ERROR"):
            sent = produce(_keys(), channel)

        self.assertEqual(sent, 1)
        self.assertIsInstance(channel.error, RuntimeError)
        self.assertEqual(channel.last_key, "a")
        self.assertEqual(channel.get(), "a")
        self.assertIsNone(channel.get())

    def test_clean_listing_leaves_no_error(self) -> None:
        channel = KeyChannel(10)
        produce(["a", "b"], channel)
        self.assertIsNone(channel.error)
        self.assertEqual(channel.last_key, "b")


if __name__ == "__main__":
    unittest.main()
