import os
import shutil
import tempfile
import unittest
from unittest.mock import Mock

import requests

from scroll_harvester.core.factory import ComponentFactory, default_variables
from scroll_harvester.core.models import (
    EngineSettings,
    EntityType,
    HarvestJob,
    HarvestTarget,
    RequestSpec,
    StateSettings,
)
from scroll_harvester.drivers.graphql_driver import GraphQLCursorDriver
from scroll_harvester.http.client import RequestsHttpClient
from scroll_harvester.http.policies import RetryPolicy
from scroll_harvester.sinks.csv_sink import CsvSink
from scroll_harvester.sinks.jsonl_sink import JsonlSink


class TestComponentFactory(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def job(self, sink_type, transport="playwright", entity_type=EntityType.COMMENTS):
        return HarvestJob(
            id="j",
            name="J",
            entity_type=entity_type,
            targets=[HarvestTarget(entity_id="1", url="https://www.instagram.com/p/1/")],
            engine=EngineSettings(transport=transport, query_hash="h"),
            state=StateSettings(path=os.path.join(self.tmp_dir, "state.db")),
            sink_config={"type": sink_type, "path": os.path.join(self.tmp_dir, f"out.{sink_type}")},
        )

    def test_builds_jsonl_pipeline(self):
        built = ComponentFactory().build(self.job("jsonl"))
        self.assertIsInstance(built.output, JsonlSink)
        self.assertIs(built.sink.store, built.store)
        self.assertIs(built.engine.sink, built.sink)
        built.output.close()

    def test_builds_csv_pipeline(self):
        built = ComponentFactory().build(self.job("csv"))
        self.assertIsInstance(built.output, CsvSink)
        built.output.close()

    def test_graphql_transport_opens_cursor_driver(self):
        job = self.job("jsonl", transport="graphql", entity_type=EntityType.FOLLOWERS)
        built = ComponentFactory().build(job)
        with built.engine.driver_factory(job.targets[0]) as driver:
            self.assertIsInstance(driver, GraphQLCursorDriver)
            self.assertEqual(driver.variables["id"], "1")
        built.output.close()

    def test_default_variables(self):
        target = HarvestTarget(entity_id="Bx", variables={"include_reel": True})
        self.assertEqual(default_variables(EntityType.LIKERS, target), {"shortcode": "Bx", "include_reel": True})
        self.assertEqual(
            default_variables(EntityType.FOLLOWING, HarvestTarget(entity_id="7")),
            {"id": "7", "include_reel": False, "fetch_mutual": False},
        )


class TestRequestsHttpClient(unittest.TestCase):
    def response(self, status, text='{"data": {}}'):
        r = Mock()
        r.status_code = status
        r.url = "https://www.instagram.com/graphql/query/?x=1"
        r.headers = {"Content-Type": "application/json"}
        r.text = text
        return r

    def client(self, session):
        delay = Mock()
        delay.sleep.return_value = True
        return RequestsHttpClient(retry=RetryPolicy(max_attempts=3, base_delay_s=0, jitter_s=0), delay=delay, session=session)

    def test_returns_raw_page(self):
        session = Mock()
        session.headers = {}
        session.request.return_value = self.response(200)

        page = self.client(session).send(RequestSpec(url="https://www.instagram.com/graphql/query/", params={"x": 1}))

        self.assertEqual(page.status_code, 200)
        self.assertEqual(page.content_type, "application/json")
        self.assertEqual(page.body, '{"data": {}}')
        self.assertIn("User-Agent", session.headers)

    def test_retries_server_errors(self):
        session = Mock()
        session.headers = {}
        session.request.side_effect = [self.response(503), self.response(200)]
        page = self.client(session).send(RequestSpec(url="u"))
        self.assertEqual(page.status_code, 200)
        self.assertEqual(session.request.call_count, 2)

    def test_rate_limit_is_not_retried_here(self):
        session = Mock()
        session.headers = {}
        session.request.return_value = self.response(429)
        self.assertEqual(self.client(session).send(RequestSpec(url="u")).status_code, 429)
        self.assertEqual(session.request.call_count, 1)

    def test_raises_after_exhausting_attempts(self):
        session = Mock()
        session.headers = {}
        session.request.side_effect = requests.ConnectionError("down")
        with self.assertRaises(requests.ConnectionError):
            self.client(session).send(RequestSpec(url="u"))
        self.assertEqual(session.request.call_count, 3)


if __name__ == "__main__":
    unittest.main()
