"""Tests for RedisFrameSink — batching, ordering, drop-oldest queue semantics."""
from __future__ import annotations

import threading
from queue import Queue
from unittest.mock import patch

from redis.exceptions import RedisError

from common.settings import SinkConfig
from sink.frame_sink import RedisFrameSink, _offer_latest
from tests.fakes import make_mat


def _sink(mock_redis, **kwargs) -> RedisFrameSink:
    sink = RedisFrameSink(client=mock_redis, queue_name="frames:test", **kwargs)
    sink._encode = lambda frame_id, mat: str(frame_id).encode()
    return sink


# ---------- Batching ----------

class TestBatching:
    def test_batch_pushed_in_frame_order(self, mock_redis):
        sink = _sink(mock_redis, batch_size=2)
        sink.start()
        sink.add_frame(2, make_mat(4, 4))
        sink.add_frame(1, make_mat(4, 4))
        sink.close()

        mock_redis.rpush.assert_called_once_with("frames:test", b"1", b"2")
        assert sink.sent_count == 2

    def test_partial_batch_flushed_on_close(self, mock_redis):
        sink = _sink(mock_redis, batch_size=5)
        sink.start()
        sink.add_frame(1, make_mat(4, 4))
        sink.close()
        mock_redis.rpush.assert_called_once_with("frames:test", b"1")

    def test_batch_size_clamped_to_one(self, mock_redis):
        sink = _sink(mock_redis, batch_size=0)
        sink.start()
        sink.add_frame(1, make_mat(4, 4))
        sink.add_frame(2, make_mat(4, 4))
        sink.close()
        assert mock_redis.rpush.call_count == 2

    def test_redis_failure_counted(self, mock_redis):
        mock_redis.rpush.side_effect = RedisError("down")
        sink = _sink(mock_redis)
        sink.start()
        sink.add_frame(1, make_mat(4, 4))
        sink.close()
        assert sink.failed_batches == 1
        assert sink.sent_count == 0

    def test_close_without_start_is_noop(self, mock_redis):
        _sink(mock_redis).close()
        mock_redis.rpush.assert_not_called()


class TestBackpressure:
    def test_full_queue_drops_oldest_frame(self, mock_redis):
        sink = _sink(mock_redis, queue_size=2)
        for frame_id in (1, 2, 3):
            sink.add_frame(frame_id, make_mat(4, 4))
        assert sink.dropped_count == 1

        sink.start()
        sink.close()
        pushed = [c.args[1] for c in mock_redis.rpush.call_args_list]
        assert pushed == [b"2", b"3"]


def test_encode_produces_jpeg(mock_redis):
    sink = RedisFrameSink(client=mock_redis)
    data = sink._encode(1, make_mat(16, 16))
    assert data[:2] == b"\xff\xd8"


# ---------- _offer_latest ----------

def test_offer_puts_to_empty_queue():
    q = Queue(maxsize=2)
    assert _offer_latest(q, "a") is False
    assert q.get_nowait() == "a"


def test_offer_drops_oldest_when_full():
    q = Queue(maxsize=1)
    _offer_latest(q, "old")
    assert _offer_latest(q, "new") is True
    assert q.get_nowait() == "new"


def test_offer_repeated_drops_keep_latest():
    q = Queue(maxsize=1)
    for i in range(100):
        _offer_latest(q, i)
    assert q.get_nowait() == 99


def test_offer_thread_safe():
    """50 threads offering concurrently must not deadlock or raise."""
    q = Queue(maxsize=3)
    barrier = threading.Barrier(50)
    errors = []

    def _offer(value):
        try:
            barrier.wait(timeout=2)
            for _ in range(20):
                _offer_latest(q, value)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_offer, args=(i,)) for i in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert not errors, f"Threads raised: {errors}"
    assert q.qsize() <= 3


def test_from_config(mock_redis):
    cfg = SinkConfig(host="redis-sink", port=6380, queue_name="frames:cfg", batch_size=3)
    with patch("sink.frame_sink.create_redis_client", return_value=mock_redis) as factory:
        sink = RedisFrameSink.from_config(cfg)

    factory.assert_called_once_with("redis://redis-sink:6380/0", decode_responses=False)
    assert sink._queue_name == "frames:cfg"
    assert sink._batch_size == 3
