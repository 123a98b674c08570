# hrvstream/streaming/ecg_consumer.py
"""
Kafka ECG consumer.

Responsibilities:
    - Subscribe to the configured ECG topic.
    - Deserialize JSON chunk messages coming from ecg_producer.
    - Forward every chunk to a StreamingRouter as a ProcessEcg command.
    - Run in a resilient loop with automatic reconnect until stopped.

Message schema:
    {
        "stream":  <str, stream id>,
        "fs":      <float, Hz>,
        "samples": [<float>, ...]
    }

Configuration:
    - Kafka connection and topic: hrvstream.config.settings.settings.kafka
"""

import json
import threading
from typing import Any, Callable, Iterable, Optional

from kafka import KafkaConsumer

from hrvstream.config.settings import KafkaSettings, settings
from hrvstream.signals.errors import ChannelClosed, PipelineError
from hrvstream.signals.types import TimeSeries
from hrvstream.streaming.router import StreamingRouter
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="ecg_consumer", logfile_name="consumer.log")

RETRY_DELAY_S = 2.0

# Single background consumer thread handle
_consumer_thread: Optional[threading.Thread] = None
_stop_event: Optional[threading.Event] = None


def default_consumer_factory(kafka: KafkaSettings) -> KafkaConsumer:
    return KafkaConsumer(
        kafka.ecg_topic,
        bootstrap_servers=kafka.bootstrap_servers,
        group_id=kafka.group_id,
        auto_offset_reset="latest",
        enable_auto_commit=True,
        consumer_timeout_ms=1000,
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
    )


def message_to_chunk(data: Any, default_stream: str) -> Optional[tuple]:
    """(stream_id, TimeSeries) for a valid message, None otherwise."""
    if not isinstance(data, dict):
        logger.warning("Skipped non-dict message: %r", data)
        return None
    if "samples" not in data or "fs" not in data:
        logger.warning("Skipped message without 'samples'/'fs': %r", data)
        return None
    try:
        chunk = TimeSeries(data["samples"], float(data["fs"]))
    except (PipelineError, TypeError, ValueError) as exc:
        logger.warning("Skipped malformed chunk: %s", exc)
        return None
    if len(chunk) == 0:
        return None
    return str(data.get("stream", default_stream)), chunk


def forward_messages(messages: Iterable[Any], router: StreamingRouter,
                     stop_event: Optional[threading.Event] = None) -> int:
    """Submit every valid message to the router; returns the number accepted."""
    accepted = 0
    default_stream = settings.streaming.default_stream_id
    for msg in messages:
        if stop_event is not None and stop_event.is_set():
            break
        data = getattr(msg, "value", msg)
        parsed = message_to_chunk(data, default_stream)
        if parsed is None:
            continue
        stream_id, chunk = parsed
        if router.submit_ecg(stream_id, chunk):
            accepted += 1
    return accepted


def run_consumer(
    router: StreamingRouter,
    stop_event: threading.Event,
    consumer_factory: Callable[[KafkaSettings], Any] = default_consumer_factory,
    kafka: Optional[KafkaSettings] = None,
    retry_delay_s: float = RETRY_DELAY_S,
) -> None:
    """
    Blocking loop: consume ECG chunks and feed them to `router`.

    Behaviour:
        - Creates a consumer inside a retry loop.
        - On a broker / network error, waits retry_delay_s and reconnects.
        - Returns when stop_event is set or the router is closed.
    """
    kafka = kafka or settings.kafka
    while not stop_event.is_set():
        consumer = None
        try:
            consumer = consumer_factory(kafka)
            logger.info(
                "Listening on topic='%s' (bootstrap=%s, group_id=%s)",
                kafka.ecg_topic, kafka.bootstrap_servers, kafka.group_id,
            )
            while not stop_event.is_set():
                forward_messages(consumer, router, stop_event)
        except ChannelClosed:
            logger.info("Router closed, consumer exiting")
            return
        except Exception as exc:
            # broker down, network error, ...: reconnect
            logger.error("Consumer error: %r (retrying in %.1fs)", exc, retry_delay_s)
            stop_event.wait(retry_delay_s)
        finally:
            if consumer is not None:
                try:
                    consumer.close()
                except Exception:
                    logger.warning("Consumer close failed", exc_info=True)


def start_consumer_background(router: StreamingRouter) -> threading.Event:
    """
    Start the Kafka ECG consumer in a daemon thread, if not already running.
    Returns the event that stops it.
    """
    global _consumer_thread, _stop_event

    if _consumer_thread is not None and _consumer_thread.is_alive():
        return _stop_event

    _stop_event = threading.Event()
    t = threading.Thread(target=run_consumer, args=(router, _stop_event), daemon=True)
    t.start()
    _consumer_thread = t
    logger.info("Background consumer thread started (daemon=%s)", t.daemon)
    return _stop_event


def stop_consumer_background(timeout: float = 5.0) -> None:
    global _consumer_thread
    if _stop_event is not None:
        _stop_event.set()
    if _consumer_thread is not None:
        _consumer_thread.join(timeout)
        _consumer_thread = None


if __name__ == "__main__":
    with StreamingRouter() as _router:
        run_consumer(_router, threading.Event())
