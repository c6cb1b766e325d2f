"""
End-to-end tests for the /ws gateway through FastAPI's TestClient.

The transcription backend is a MagicMock; conversations go to a throwaway
SQLite file.
"""

import base64
import os
import shutil
import tempfile
import time
import unittest
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

import metrics.streaming_metrics as streaming_metrics
from main import create_app
from storage.conversations import ConversationStore
from streaming.registry import SessionRegistry


def audio_frame(data: bytes) -> dict:
    return {"type": "audio", "audio": base64.b64encode(data).decode()}


class GatewayTestCase(unittest.TestCase):

    def setUp(self):
        streaming_metrics.reset()
        tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmp, True)
        self.store = ConversationStore(f"sqlite:///{os.path.join(tmp, 'test.db')}")
        self.addCleanup(self.store.engine.dispose)
        self.backend = MagicMock(return_value="hello")

    def make_client(self, store=None):
        app = create_app(transcribe=self.backend, store=store or self.store)
        self.registry = app.state.registry
        client = TestClient(app)
        self.addCleanup(client.close)
        return client

    def wait_for_registry_empty(self):
        deadline = time.time() + 2
        while len(self.registry) and time.time() < deadline:
            time.sleep(0.01)


class TestSessionScenarios(GatewayTestCase):

    def test_five_chunks_then_stop(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "A"})
            self.assertEqual(ws.receive_json(), {"type": "started", "sessionId": "A"})
            for _ in range(5):
                ws.send_json(audio_frame(b"\x00" * 100))
            self.assertEqual(
                ws.receive_json(),
                {"type": "transcript", "text": "hello ", "fullTranscript": "hello "},
            )
            ws.send_json({"type": "stop"})
            self.assertEqual(ws.receive_json(), {"type": "complete", "transcript": "hello "})
            self.wait_for_registry_empty()
            self.assertNotIn("A", self.registry)

        self.backend.assert_called_once_with(b"\x00" * 500)
        record = self.store.get_conversation("A")
        self.assertEqual(record["transcript"], "hello ")
        self.assertGreaterEqual(record["duration"], 0)

    def test_three_chunks_flushed_on_stop(self):
        self.backend.return_value = "done"
        client = self.make_client()
        chunks = [b"\x01" * 10, b"\x02" * 10, b"\x03" * 10]
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "B"})
            ws.receive_json()
            for chunk in chunks:
                ws.send_json(audio_frame(chunk))
            ws.send_json({"type": "stop"})
            self.assertEqual(ws.receive_json(), {"type": "complete", "transcript": "done "})
        self.backend.assert_called_once_with(b"".join(chunks))

    def test_transcription_failure_keeps_session_usable(self):
        self.backend.side_effect = [RuntimeError("service unavailable"), "ok"]
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "C"})
            ws.receive_json()
            for _ in range(5):
                ws.send_json(audio_frame(b"\x00"))
            error = ws.receive_json()
            self.assertEqual(error["type"], "error")
            self.assertEqual(error["code"], "transcription_failed")
            for _ in range(5):
                ws.send_json(audio_frame(b"\x01"))
            self.assertEqual(
                ws.receive_json(),
                {"type": "transcript", "text": "ok ", "fullTranscript": "ok "},
            )
            ws.send_json({"type": "stop"})
            self.assertEqual(ws.receive_json()["transcript"], "ok ")

    def test_generated_session_id(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start"})
            started = ws.receive_json()
            self.assertEqual(started["type"], "started")
            self.assertTrue(started["sessionId"])
            self.assertIn(started["sessionId"], self.registry)

    def test_legacy_socket_route(self):
        client = self.make_client()
        with client.websocket_connect("/api/socket") as ws:
            ws.send_json({"type": "start", "sessionId": "R"})
            self.assertEqual(ws.receive_json()["sessionId"], "R")


class TestErrors(GatewayTestCase):

    def test_stop_without_session(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "stop"})
            error = ws.receive_json()
            self.assertEqual(error["type"], "error")
            self.assertEqual(error["code"], "session_not_found")
            self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.store.list_conversations(), [])

    def test_audio_before_start(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json(audio_frame(b"\x00"))
            self.assertEqual(ws.receive_json()["code"], "session_not_found")

    def test_audio_after_stop(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "A"})
            ws.receive_json()
            ws.send_json({"type": "stop"})
            self.assertEqual(ws.receive_json()["type"], "complete")
            ws.send_json(audio_frame(b"\x00"))
            self.assertEqual(ws.receive_json()["code"], "session_not_found")
            # connection is still alive
            ws.send_json({"type": "start", "sessionId": "A2"})
            self.assertEqual(ws.receive_json(), {"type": "started", "sessionId": "A2"})

    def test_malformed_frames_do_not_close_connection(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            self.assertEqual(ws.receive_json()["code"], "malformed_message")
            ws.send_json({"type": "audio", "audio": "%%%"})
            self.assertEqual(ws.receive_json()["code"], "malformed_message")
            ws.send_bytes(b"\x00\x01")
            self.assertEqual(ws.receive_json()["code"], "malformed_message")
            ws.send_json({"type": "start", "sessionId": "M"})
            self.assertEqual(ws.receive_json()["type"], "started")

    def test_second_start_while_recording(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "A"})
            ws.receive_json()
            ws.send_json({"type": "start", "sessionId": "B"})
            self.assertEqual(ws.receive_json()["code"], "invalid_state")
            self.assertEqual(self.registry.ids(), ["A"])

    def test_session_id_in_use_by_other_connection(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            first.send_json({"type": "start", "sessionId": "shared"})
            first.receive_json()
            second.send_json({"type": "start", "sessionId": "shared"})
            self.assertEqual(second.receive_json()["code"], "invalid_state")
            # the second connection never bound to "shared", so its stop finds nothing
            second.send_json({"type": "stop"})
            self.assertEqual(second.receive_json()["code"], "session_not_found")
            self.assertIn("shared", self.registry)

    def test_finished_connection_cannot_touch_reused_session_id(self):
        store = MagicMock()
        client = self.make_client(store=store)
        with client.websocket_connect("/ws") as second:
            with client.websocket_connect("/ws") as first:
                first.send_json({"type": "start", "sessionId": "A"})
                first.receive_json()
                first.send_json({"type": "stop"})
                self.assertEqual(first.receive_json(), {"type": "complete", "transcript": ""})
                self.wait_for_registry_empty()

                second.send_json({"type": "start", "sessionId": "A"})
                self.assertEqual(second.receive_json(), {"type": "started", "sessionId": "A"})
                reused = self.registry.get("A")

                first.send_json(audio_frame(b"\x00"))
                self.assertEqual(first.receive_json()["code"], "session_not_found")
                first.send_json({"type": "stop"})
                self.assertEqual(first.receive_json()["code"], "session_not_found")
                self.assertIs(self.registry.get("A"), reused)

            # closing the first connection leaves the reused id alone
            second.send_json(audio_frame(b"\x01"))
            second.send_json({"type": "stop"})
            self.assertEqual(second.receive_json(), {"type": "complete", "transcript": "hello "})
        saved = [c.args for c in store.save_conversation.call_args_list]
        self.assertEqual([(s[0], s[1]) for s in saved], [("A", ""), ("A", "hello ")])

    def test_persistence_failure_still_completes(self):
        store = MagicMock()
        store.save_conversation.side_effect = RuntimeError("db down")
        client = self.make_client(store=store)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "P"})
            ws.receive_json()
            ws.send_json({"type": "stop"})
            error = ws.receive_json()
            self.assertEqual(error["code"], "persistence_failed")
            self.assertEqual(ws.receive_json(), {"type": "complete", "transcript": ""})
            self.wait_for_registry_empty()
            self.assertNotIn("P", self.registry)
        store.save_conversation.assert_called_once()


class TestDisconnect(GatewayTestCase):

    def test_close_discards_session_without_saving(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "D"})
            ws.receive_json()
            for _ in range(3):
                ws.send_json(audio_frame(b"\x00"))
        self.wait_for_registry_empty()
        self.assertNotIn("D", self.registry)
        deadline = time.time() + 2
        while not streaming_metrics.get_snapshot()["sessions_discarded"] and time.time() < deadline:
            time.sleep(0.01)
        self.backend.assert_not_called()
        self.assertIsNone(self.store.get_conversation("D"))
        self.assertEqual(streaming_metrics.get_snapshot()["sessions_discarded"], 1)

    def test_connection_counters(self):
        client = self.make_client()
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start", "sessionId": "E"})
            ws.receive_json()
            self.assertEqual(streaming_metrics.get_snapshot()["active_connections"], 1)
        self.wait_for_registry_empty()
        deadline = time.time() + 2
        while streaming_metrics.get_snapshot()["active_connections"] and time.time() < deadline:
            time.sleep(0.01)
        self.assertEqual(streaming_metrics.get_snapshot()["active_connections"], 0)


class TestHttpEndpoints(GatewayTestCase):

    def test_health(self):
        client = self.make_client()
        body = client.get("/").json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["active_sessions"], 0)

    def test_metrics_snapshot(self):
        client = self.make_client()
        body = client.get("/metrics/streaming").json()
        for key in ("active_connections", "active_sessions", "avg_latency_ms", "transcription_failure_count"):
            self.assertIn(key, body)

    def test_conversations(self):
        self.store.save_conversation("X", "saved text ", 1200)
        client = self.make_client()
        listed = client.get("/conversations").json()
        self.assertEqual([c["id"] for c in listed], ["X"])
        one = client.get("/conversations/X").json()
        self.assertEqual(one["transcript"], "saved text ")
        self.assertEqual(one["duration"], 1200)
        self.assertEqual(client.get("/conversations/nope").status_code, 404)


class TestCreateApp(unittest.TestCase):

    @patch("main.create_transcriber")
    def test_injected_registry_skips_backend(self, create_transcriber):
        registry = SessionRegistry(MagicMock())
        app = create_app(registry=registry, persist=False)
        create_transcriber.assert_not_called()
        self.assertIs(app.state.registry, registry)

    @patch("main.create_transcriber")
    def test_default_backend_built_once(self, create_transcriber):
        create_app(persist=False)
        create_transcriber.assert_called_once()


if __name__ == "__main__":
    unittest.main()
