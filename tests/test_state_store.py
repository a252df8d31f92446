import os
import shutil
import sqlite3
import tempfile
import threading
import unittest

from scroll_harvester.core.errors import InvalidEntityError
from scroll_harvester.core.models import ScrollState
from scroll_harvester.state.sqlite_store import SQLiteStatePersistence
from scroll_harvester.state.store import PaginationStateStore


class TestPaginationStateStore(unittest.TestCase):
    def setUp(self):
        self.store = PaginationStateStore()

    def test_first_access_installs_initial_state(self):
        state = self.store.get_or_create("post-1")
        self.assertTrue(state.has_next_page)
        self.assertFalse(state.reached_time_boundary)
        self.assertFalse(state.all_duplicates_in_last_batch)
        self.assertEqual(state.accepted_ids, set())

    def test_get_or_create_is_idempotent(self):
        first = self.store.get_or_create("post-1")
        first.accepted_ids.add("c1")
        second = self.store.get_or_create("post-1")
        self.assertIs(first, second)
        self.assertEqual(second.accepted_ids, {"c1"})
        self.assertEqual(len(self.store), 1)

    def test_empty_or_missing_id_is_rejected(self):
        for bad in ("", "   ", None):
            with self.assertRaises(InvalidEntityError):
                self.store.get_or_create(bad)
        self.assertEqual(len(self.store), 0)

    def test_concurrent_creation_yields_one_state_per_id(self):
        results = []
        barrier = threading.Barrier(8)

        def worker(entity_id):
            barrier.wait()
            results.append((entity_id, self.store.get_or_create(entity_id)))

        threads = [threading.Thread(target=worker, args=(f"e{i % 2}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(self.store), 2)
        for entity_id, state in results:
            self.assertIs(state, self.store.get_or_create(entity_id))

    def test_lock_for_is_stable_per_id(self):
        self.assertIs(self.store.lock_for("a"), self.store.lock_for("a"))
        self.assertIsNot(self.store.lock_for("a"), self.store.lock_for("b"))

    def test_snapshot_is_detached(self):
        self.store.get_or_create("a").accepted_ids.add("x")
        snap = self.store.snapshot()
        snap["a"].accepted_ids.add("y")
        self.assertEqual(self.store.get_or_create("a").accepted_ids, {"x"})

    def test_reopened_state_keeps_only_ids(self):
        state = ScrollState(has_next_page=False, reached_time_boundary=True, all_duplicates_in_last_batch=True, accepted_ids={"1"})
        fresh = state.reopened()
        self.assertTrue(fresh.has_next_page)
        self.assertFalse(fresh.reached_time_boundary)
        self.assertFalse(fresh.all_duplicates_in_last_batch)
        self.assertEqual(fresh.accepted_ids, {"1"})
        self.assertIsNot(fresh.accepted_ids, state.accepted_ids)

    def test_restore_rehydrates_states(self):
        self.store.restore({"a": ScrollState(has_next_page=False, accepted_ids={"1", "2"})})
        state = self.store.get_or_create("a")
        self.assertFalse(state.has_next_page)
        self.assertEqual(state.accepted_ids, {"1", "2"})


class TestSQLiteStatePersistence(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmp_dir, "nested", "state.db")
        self.persistence = SQLiteStatePersistence(self.db_path)

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_save_and_load_roundtrip(self):
        states = {
            "post-1": ScrollState(
                has_next_page=False,
                reached_time_boundary=True,
                all_duplicates_in_last_batch=True,
                accepted_ids={"c1", "c2"},
            ),
            "post-2": ScrollState(),
        }
        self.persistence.save_all("job-c", states)

        loaded = SQLiteStatePersistence(self.db_path).load_all("job-c")
        self.assertEqual(set(loaded), {"post-1", "post-2"})
        self.assertFalse(loaded["post-1"].has_next_page)
        self.assertTrue(loaded["post-1"].reached_time_boundary)
        self.assertTrue(loaded["post-1"].all_duplicates_in_last_batch)
        self.assertEqual(loaded["post-1"].accepted_ids, {"c1", "c2"})
        self.assertTrue(loaded["post-2"].has_next_page)
        self.assertEqual(loaded["post-2"].accepted_ids, set())

    def test_repeated_saves_update_flags_and_grow_ids(self):
        state = ScrollState(accepted_ids={"a"})
        self.persistence.save_all("job-c", {"e": state})
        state.accepted_ids.add("b")
        state.has_next_page = False
        self.persistence.save_all("job-c", {"e": state})

        loaded = SQLiteStatePersistence(self.db_path).load_all("job-c")["e"]
        self.assertEqual(loaded.accepted_ids, {"a", "b"})
        self.assertFalse(loaded.has_next_page)

    def test_states_are_scoped_by_job(self):
        self.persistence.save_all("followers", {"123": ScrollState(has_next_page=False, accepted_ids={"f1", "f2"})})
        self.persistence.save_all("following", {"123": ScrollState(accepted_ids={"g1"})})

        reader = SQLiteStatePersistence(self.db_path)
        self.assertEqual(reader.load_all("followers")["123"].accepted_ids, {"f1", "f2"})
        self.assertFalse(reader.load_all("followers")["123"].has_next_page)
        self.assertEqual(reader.load_all("following")["123"].accepted_ids, {"g1"})
        self.assertTrue(reader.load_all("following")["123"].has_next_page)
        self.assertEqual(reader.load_all("likers"), {})

    def test_checkpoint_writes_only_new_ids(self):
        state = ScrollState(accepted_ids={"a"})
        self.persistence.save_all("job-c", {"e": state})

        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM entity_accepted_id")

        state.accepted_ids.add("b")
        self.persistence.save_all("job-c", {"e": state})

        self.assertEqual(SQLiteStatePersistence(self.db_path).load_all("job-c")["e"].accepted_ids, {"b"})

    def test_run_counter(self):
        first = self.persistence.mark_run_started("job-c")
        second = self.persistence.mark_run_started("job-c")
        self.assertEqual(first, 1)
        self.assertEqual(second, 2)
        self.assertEqual(self.persistence.mark_run_started("job-d"), 1)
        self.persistence.mark_run_completed("job-c")


if __name__ == "__main__":
    unittest.main()
