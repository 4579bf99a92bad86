"""
Integration tests for the SSE status streamer
"""

import json

import pytest
from fastapi.testclient import TestClient

from orchestrator.status_streamer import StatusStreamer


def _payloads(frames):
    assert all(frame.startswith("data: ") and frame.endswith("\n\n") for frame in frames)
    return [json.loads(frame[len("data: "):]) for frame in frames]


@pytest.fixture
def fast_sleep(clock):
    """Sleep that advances the manual clock instead of waiting"""
    async def _sleep(seconds):
        clock.advance(seconds)
    return _sleep


@pytest.mark.asyncio
class TestStatusStreamer:
    """Polling snapshot stream"""

    async def test_first_frame_acknowledges_connection(self, task_store, clock, fast_sleep, pending_task):
        streamer = StatusStreamer(task_store, clock=clock, sleep=fast_sleep)

        stream = streamer.stream(pending_task.id)
        first = await stream.__anext__()
        await stream.aclose()

        assert first == 'data: {"status": "connected"}\n\n'

    async def test_closes_on_terminal_status(self, task_store, clock, pending_task):
        """Test that the stream ends with the snapshot that shows the task done"""
        ticks = []

        async def sleep_and_progress(seconds):
            clock.advance(seconds)
            ticks.append(seconds)
            task = task_store.get(pending_task.id)
            if len(ticks) == 1:
                task.advance("running")
            elif len(ticks) == 2:
                task.finish("ok")
            task_store.put(task)

        streamer = StatusStreamer(task_store, interval=1.0, clock=clock, sleep=sleep_and_progress)

        payloads = _payloads([frame async for frame in streamer.stream(pending_task.id)])

        assert payloads[0] == {"status": "connected"}
        assert [p["status"] for p in payloads[1:]] == ["pending", "running", "done"]
        assert payloads[-1]["resultSummary"] == "ok"
        assert ticks == [1.0, 1.0]

    async def test_lifetime_cap_ends_stream(self, task_store, clock, fast_sleep, pending_task):
        streamer = StatusStreamer(task_store, interval=1.0, max_lifetime=30.0, clock=clock, sleep=fast_sleep)

        frames = [frame async for frame in streamer.stream(pending_task.id)]

        assert len(frames) == 1 + 30
        assert all(p["status"] == "pending" for p in _payloads(frames[1:]))

    async def test_unknown_task_only_acknowledges(self, task_store, clock, fast_sleep):
        streamer = StatusStreamer(task_store, interval=1.0, max_lifetime=5.0, clock=clock, sleep=fast_sleep)

        frames = [frame async for frame in streamer.stream("task_missing")]

        assert _payloads(frames) == [{"status": "connected"}]


class TestEventsEndpoint:
    """SSE over HTTP"""

    def test_stream_of_finished_task(self, make_app, task_store, pending_task):
        task = task_store.get(pending_task.id)
        task.advance("running")
        task.finish("all done")
        task_store.put(task)

        response = TestClient(make_app()).get(f"/api/tasks/{pending_task.id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        frames = [line for line in response.text.split("\n\n") if line]
        payloads = [json.loads(frame[len("data: "):]) for frame in frames]
        assert payloads[0] == {"status": "connected"}
        assert payloads[-1]["id"] == pending_task.id
        assert payloads[-1]["status"] == "done"
        assert payloads[-1]["resultSummary"] == "all done"
