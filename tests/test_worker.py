# link-analytics-service/tests/test_worker.py
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from worker import make_message_handler


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


def delivery(redelivered=False):
    return MagicMock(delivery_tag=7, redelivered=redelivered)


def job_body():
    return json.dumps({"job": "increment_link_clicks", "link_id": "64b7f0c2a1b2c3d4e5f60718", "user_id": "u1"}).encode()


def test_successful_job_is_acked(loop):
    channel = MagicMock()
    with patch("worker.handle_click_job", new=AsyncMock()) as handle:
        make_message_handler(loop, MagicMock())(channel, delivery(), None, job_body())

    handle.assert_awaited_once()
    assert handle.await_args.args[0]["link_id"] == "64b7f0c2a1b2c3d4e5f60718"
    channel.basic_ack.assert_called_once_with(delivery_tag=7)
    channel.basic_nack.assert_not_called()


def test_malformed_message_is_dropped(loop):
    channel = MagicMock()
    with patch("worker.handle_click_job", new=AsyncMock()) as handle:
        make_message_handler(loop, MagicMock())(channel, delivery(), None, b"{not json")

    handle.assert_not_awaited()
    channel.basic_nack.assert_called_once_with(delivery_tag=7, requeue=False)


def test_failed_job_is_requeued_once(loop):
    channel = MagicMock()
    failing = AsyncMock(side_effect=RuntimeError("mongo unavailable"))
    with patch("worker.handle_click_job", new=failing):
        handler = make_message_handler(loop, MagicMock())
        handler(channel, delivery(redelivered=False), None, job_body())
        handler(channel, delivery(redelivered=True), None, job_body())

    assert [call.kwargs["requeue"] for call in channel.basic_nack.call_args_list] == [True, False]
    channel.basic_ack.assert_not_called()


def test_job_with_invalid_link_id_is_dropped(loop):
    channel = MagicMock()
    body = json.dumps({"job": "increment_link_clicks", "link_id": "not-an-object-id", "user_id": "u1"}).encode()

    make_message_handler(loop, MagicMock())(channel, delivery(), None, body)

    channel.basic_nack.assert_called_once_with(delivery_tag=7, requeue=False)
    channel.basic_ack.assert_not_called()
