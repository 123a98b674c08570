# hrvstream/streaming/ecg_producer.py
"""
Streams a recorded ECG file to Kafka in fixed-size chunks.

Each message follows the schema ecg_consumer expects:
    {"stream": <id>, "fs": <Hz>, "samples": [...]}

Chunks are paced at real time (chunk length / fs) unless `realtime=False`.
"""

import argparse
import json
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import numpy as np
from kafka import KafkaProducer

from hrvstream.config.settings import KafkaSettings, settings
from hrvstream.hrv_metrics.service_hrv import load_ecg_csv
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="ecg_producer", logfile_name="producer.log")

DEFAULT_CHUNK_S = 1.0


def iter_messages(samples: np.ndarray, fs: float, stream_id: str,
                  chunk_size: int) -> Iterator[Dict[str, Any]]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for start in range(0, samples.size, chunk_size):
        yield {
            "stream": stream_id,
            "fs": fs,
            "samples": samples[start:start + chunk_size].tolist(),
        }


def default_producer_factory(kafka: KafkaSettings) -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=kafka.bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks=1,
    )


def stream_file(
    path: Path,
    fs: float,
    stream_id: Optional[str] = None,
    chunk_s: float = DEFAULT_CHUNK_S,
    loop: bool = False,
    realtime: bool = True,
    producer_factory: Callable[[KafkaSettings], Any] = default_producer_factory,
    kafka: Optional[KafkaSettings] = None,
) -> int:
    """
    Send the samples of `path` to the ECG topic. Returns the number of messages sent.
    """
    kafka = kafka or settings.kafka
    stream_id = stream_id or settings.streaming.default_stream_id
    series = load_ecg_csv(path, fs)
    chunk_size = max(int(round(chunk_s * fs)), 1)

    producer = producer_factory(kafka)
    logger.info(
        "Producing %s (%d samples, %.1f Hz) to topic='%s' as stream '%s' (loop=%s)",
        path, len(series), fs, kafka.ecg_topic, stream_id, loop,
    )

    sent = 0
    try:
        while True:
            for msg in iter_messages(series.samples, fs, stream_id, chunk_size):
                producer.send(kafka.ecg_topic, msg)
                sent += 1
                if realtime:
                    time.sleep(len(msg["samples"]) / fs)
            producer.flush()
            if not loop:
                break
    finally:
        producer.close()
        logger.info("Producer done after %d messages", sent)
    return sent


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stream an ECG CSV file to Kafka.")
    parser.add_argument("path", type=Path, help="CSV file with one sample per row")
    parser.add_argument("--fs", type=float, default=settings.pipeline.fs, help="Sampling rate (Hz)")
    parser.add_argument("--stream", default=settings.streaming.default_stream_id)
    parser.add_argument("--chunk-s", type=float, default=DEFAULT_CHUNK_S)
    parser.add_argument("--loop", action="store_true", help="Restart at end of file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    stream_file(args.path, args.fs, stream_id=args.stream, chunk_s=args.chunk_s, loop=args.loop)


if __name__ == "__main__":
    main()
