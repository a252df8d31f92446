import os
import shutil
import tempfile
import threading
import unittest
from contextlib import contextmanager
from unittest.mock import Mock

from scroll_harvester.core.engine import HarvestEngine
from scroll_harvester.core.models import (
    EngineSettings,
    EntityType,
    HarvestJob,
    HarvestTarget,
    RawPage,
    StateSettings,
)
from scroll_harvester.state.sqlite_store import SQLiteStatePersistence
from scroll_harvester.state.store import PaginationStateStore
from scroll_harvester.transform.sink import DeduplicatingItemSink


def comment_payload(ids, has_next=True):
    return {
        "shortcode_media": {
            "edge_media_to_parent_comment": {
                "count": 10,
                "page_info": {"has_next_page": has_next, "end_cursor": "c"},
                "edges": [{"node": {"id": i, "created_at": 1704844800}} for i in ids],
            }
        }
    }


def user_list_payload(edge_name, ids):
    return {
        "user": {
            edge_name: {
                "count": len(ids),
                "page_info": {"has_next_page": False, "end_cursor": None},
                "edges": [{"node": {"id": i, "username": f"user{i}"}} for i in ids],
            }
        }
    }


class FakeDriver:
    """Serves canned pages; the trigger disappears once they run out."""

    def __init__(self, payloads, initial=None):
        self.payloads = list(payloads)
        self.initial = initial
        self._pending = None

    def trigger_action(self, entity_id):
        if not self.payloads:
            return False
        self._pending = RawPage(url="fake", payload=self.payloads.pop(0))
        return True

    def wait_for_matching_request(self, entity_id, timeout_s):
        return self._pending is not None

    def wait_for_matching_response(self, entity_id, timeout_s):
        page, self._pending = self._pending, None
        return page

    def is_page_usable(self):
        return True

    def initial_page(self):
        if self.initial is None:
            return None
        return RawPage(url="fake", payload=self.initial)


class TestHarvestEngine(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.state_path = os.path.join(self.tmp_dir, "state.db")

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def make_job(self, *entity_ids, limit=100, workers=1, job_id="job-1", entity_type=EntityType.COMMENTS):
        return HarvestJob(
            id=job_id,
            name="Comments",
            entity_type=entity_type,
            targets=[HarvestTarget(entity_id=e) for e in entity_ids],
            limit=limit,
            engine=EngineSettings(backoff_unit_s=0, max_retries=1, max_workers=workers),
            state=StateSettings(path=self.state_path),
        )

    def make_engine(self, drivers, output=None):
        store = PaginationStateStore()
        output = output or Mock()

        @contextmanager
        def driver_factory(target):
            driver = drivers[target.entity_id]
            if isinstance(driver, Exception):
                raise driver
            yield driver

        engine = HarvestEngine(
            store=store,
            sink=DeduplicatingItemSink(store, output),
            driver_factory=driver_factory,
            persistence=SQLiteStatePersistence(self.state_path),
        )
        return engine, output

    def test_walks_every_target_until_done(self):
        drivers = {
            "p1": FakeDriver([comment_payload(["1", "2"]), comment_payload(["3"], has_next=False)]),
            "p2": FakeDriver([comment_payload(["a"])]),
        }
        engine, output = self.make_engine(drivers)

        report = engine.run(self.make_job("p1", "p2", workers=2))

        self.assertEqual(report.entities["p1"].status, "done")
        self.assertEqual(report.entities["p1"].accepted, 3)
        self.assertEqual(report.entities["p2"].accepted, 1)
        self.assertEqual(report.records_emitted, 4)
        self.assertEqual(report.failures, {})
        self.assertEqual(output.emit.call_count, 4)
        output.close.assert_called_once()

    def test_initial_page_is_ingested_first(self):
        drivers = {"p1": FakeDriver([comment_payload(["2"], has_next=False)], initial=comment_payload(["1"]))}
        engine, output = self.make_engine(drivers)

        engine.run(self.make_job("p1"))

        self.assertEqual([c.args[0].id for c in output.emit.call_args_list], ["1", "2"])

    def test_limit_stops_entity(self):
        drivers = {"p1": FakeDriver([comment_payload(["1", "2", "3"]), comment_payload(["4", "5", "6"])])}
        engine, output = self.make_engine(drivers)

        report = engine.run(self.make_job("p1", limit=4))

        self.assertEqual(report.entities["p1"].accepted, 4)
        self.assertEqual(report.entities["p1"].iterations, 2)

    def test_resumed_run_skips_already_emitted_records(self):
        first, out1 = self.make_engine({"p1": FakeDriver([comment_payload(["1", "2"])])})
        first.run(self.make_job("p1"))
        self.assertEqual(out1.emit.call_count, 2)

        second, out2 = self.make_engine({"p1": FakeDriver([comment_payload(["1", "2", "3"])])})
        report = second.run(self.make_job("p1"))

        self.assertEqual([c.args[0].id for c in out2.emit.call_args_list], ["3"])
        self.assertEqual(report.entities["p1"].accepted, 1)
        self.assertEqual(SQLiteStatePersistence(self.state_path).load_all("job-1")["p1"].accepted_ids, {"1", "2", "3"})

    def test_jobs_sharing_a_database_keep_separate_state(self):
        followers, out1 = self.make_engine({"123": FakeDriver([user_list_payload("edge_followed_by", ["f1", "f2"])])})
        followers.run(self.make_job("123", job_id="followers-123", entity_type=EntityType.FOLLOWERS))
        self.assertEqual(out1.emit.call_count, 2)

        following, out2 = self.make_engine({"123": FakeDriver([user_list_payload("edge_follow", ["g1", "g2", "g3"])])})
        report = following.run(self.make_job("123", job_id="following-123", entity_type=EntityType.FOLLOWING))

        self.assertEqual([c.args[0].id for c in out2.emit.call_args_list], ["g1", "g2", "g3"])
        self.assertEqual(report.entities["123"].accepted, 3)
        reader = SQLiteStatePersistence(self.state_path)
        self.assertEqual(reader.load_all("followers-123")["123"].accepted_ids, {"f1", "f2"})
        self.assertEqual(reader.load_all("following-123")["123"].accepted_ids, {"g1", "g2", "g3"})

    def test_rerun_of_finished_entity_collects_new_items(self):
        first, out1 = self.make_engine({"p1": FakeDriver([comment_payload(["1", "2"], has_next=False)])})
        first.run(self.make_job("p1"))
        self.assertFalse(SQLiteStatePersistence(self.state_path).load_all("job-1")["p1"].has_next_page)

        second, out2 = self.make_engine({"p1": FakeDriver([comment_payload(["1", "2", "3"], has_next=False)])})
        report = second.run(self.make_job("p1"))

        self.assertEqual([c.args[0].id for c in out2.emit.call_args_list], ["3"])
        self.assertEqual(report.entities["p1"].iterations, 1)
        self.assertEqual(out1.emit.call_count, 2)

    def test_one_failing_entity_does_not_stop_others(self):
        bad_page = comment_payload(["x"])
        bad_page["shortcode_media"]["edge_media_to_parent_comment"]["edges"].append({"node": {}})
        drivers = {
            "bad": FakeDriver([bad_page]),
            "broken": RuntimeError("browser crashed"),
            "good": FakeDriver([comment_payload(["1"], has_next=False)]),
        }
        engine, output = self.make_engine(drivers)

        report = engine.run(self.make_job("bad", "broken", "good"))

        self.assertEqual(report.entities["bad"].status, "failed")
        self.assertIn("MissingIdError", report.entities["bad"].error)
        self.assertEqual(report.entities["broken"].status, "failed")
        self.assertEqual(report.entities["good"].status, "done")
        self.assertEqual(report.failures, {"MissingIdError": 1, "RuntimeError": 1})
        self.assertEqual(output.emit.call_count, 1)

    def test_stop_event_marks_entities_stopped(self):
        stop = threading.Event()
        stop.set()
        store = PaginationStateStore()

        @contextmanager
        def driver_factory(target):
            yield FakeDriver([comment_payload(["1"])])

        engine = HarvestEngine(store, DeduplicatingItemSink(store, Mock()), driver_factory, stop_event=stop)
        report = engine.run(self.make_job("p1"))

        self.assertEqual(report.entities["p1"].status, "stopped")
        self.assertEqual(report.entities["p1"].accepted, 0)


if __name__ == "__main__":
    unittest.main()
