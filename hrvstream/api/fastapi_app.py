# hrvstream/api/fastapi_app.py
"""
FastAPI-based HRV streaming service.

This service:
    - owns one StreamingRouter (worker thread) and one Store;
    - accepts ECG chunks and beat annotations over HTTP, and optionally from
      Kafka through ecg_consumer;
    - serves the prepared snapshot of a stream as flat JSON.

The Store is single-owner: every endpoint touching it is `async`, so they
all run on the event loop thread. Router calls that may wait on a full
command queue go through asyncio.to_thread.

Endpoints:
    - GET  /health
    - POST /streams/{stream_id}/ecg
    - POST /streams/{stream_id}/events
    - PUT  /streams/{stream_id}/modality
    - GET  /streams/{stream_id}/snapshot
    - PUT  /config/interp_fs
    - POST /recording/start
    - POST /recording/stop
    - GET  /recording
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hrvstream.config.settings import PipelineConfig, settings
from hrvstream.hrv_metrics.service_hrv import PipelineResult, metrics_to_json
from hrvstream.signals.errors import ChannelClosed, PipelineError
from hrvstream.signals.types import Events, TimeSeries
from hrvstream.streaming.ecg_consumer import start_consumer_background, stop_consumer_background
from hrvstream.streaming.router import StreamingRouter
from hrvstream.streaming.store import Modality, Snapshot, Store
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="hrv_api", logfile_name="api.log")


# -------------------- REQUEST BODIES -------------------- #

class EcgChunk(BaseModel):
    fs: float = Field(..., gt=0, description="Sampling rate (Hz)")
    samples: List[float]


class EventBatch(BaseModel):
    fs: float = Field(..., gt=0)
    times_s: Optional[List[float]] = None
    indices: Optional[List[int]] = None
    labels: Optional[List[Optional[str]]] = None


class RecordingRequest(BaseModel):
    path: str
    fs: Optional[float] = None
    stream_id: Optional[str] = None


# -------------------- OUTPUT -------------------- #

def snapshot_to_json(snapshot: Snapshot) -> Dict[str, Any]:
    """Flat, unit-suffixed record of one snapshot."""
    out: Dict[str, Any] = {
        "stream_id": snapshot.stream_id,
        "modality": snapshot.modality.value,
        "version": snapshot.version,
        "n_samples": len(snapshot.series) if snapshot.series is not None else 0,
        "duration_s": snapshot.series.duration_s if snapshot.series is not None else 0.0,
    }
    out.update(
        metrics_to_json(
            PipelineResult(
                events=snapshot.events,
                rr=snapshot.rr,
                time=snapshot.time,
                frequency=snapshot.frequency,
                nonlinear=snapshot.nonlinear,
                sqi=snapshot.sqi,
            )
        )
    )
    for name, message in snapshot.errors.items():
        out[f"error_{name}"] = message
    return out


# -------------------- APP FACTORY -------------------- #

def create_app(config: Optional[PipelineConfig] = None, enable_kafka: Optional[bool] = None) -> FastAPI:
    config = (config or settings.pipeline).validate()
    use_kafka = settings.api.enable_kafka if enable_kafka is None else enable_kafka

    app = FastAPI(
        title="hrvstream",
        version="1.0.0",
        description="Streaming ECG -> beats -> HRV / SQI service.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.router = StreamingRouter(config)
    app.state.store = Store(config)

    def _router(request: Request) -> StreamingRouter:
        return request.app.state.router

    def _store(request: Request) -> Store:
        return request.app.state.store

    # ---- errors ---- #

    @app.exception_handler(ChannelClosed)
    async def channel_closed_handler(request: Request, exc: ChannelClosed) -> JSONResponse:
        logger.error("%s %s -> 503 (%s)", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": exc.kind, "stage": exc.stage, "detail": exc.message})

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        logger.warning("%s %s -> 422 (%s)", request.method, request.url.path, exc)
        return JSONResponse(status_code=422, content={"error": exc.kind, "stage": exc.stage, "detail": exc.message})

    # ---- lifecycle ---- #

    @app.on_event("startup")
    async def startup_event() -> None:
        app.state.router.start()
        logger.info("hrvstream service starting up (fs=%.1f Hz, kafka=%s)", config.fs, use_kafka)
        if use_kafka:
            logger.info(
                "Kafka bootstrap='%s', topic='%s', group_id='%s'",
                settings.kafka.bootstrap_servers,
                settings.kafka.ecg_topic,
                settings.kafka.group_id,
            )
            start_consumer_background(app.state.router)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if use_kafka:
            stop_consumer_background()
        app.state.router.shutdown()
        logger.info("hrvstream service stopped")

    # ---- endpoints ---- #

    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        router = _router(request)
        return {
            "status": "ok" if router.is_alive else "down",
            "router": router.state.value,
            "recording": router.recording_state.value,
            "streams": {sid: m.value for sid, m in _store(request).streams().items()},
        }

    @app.post("/streams/{stream_id}/ecg")
    async def post_ecg(stream_id: str, chunk: EcgChunk, request: Request) -> Dict[str, Any]:
        series = TimeSeries(chunk.samples, chunk.fs)
        accepted = await asyncio.to_thread(_router(request).submit_ecg, stream_id, series)
        logger.info("POST ecg stream=%s samples=%d accepted=%s", stream_id, len(series), accepted)
        return {"stream_id": stream_id, "accepted": accepted, "samples": len(series)}

    @app.post("/streams/{stream_id}/events")
    async def post_events(stream_id: str, batch: EventBatch, request: Request) -> Dict[str, Any]:
        if batch.indices is not None:
            events = Events(batch.indices, batch.fs, labels=batch.labels)
        else:
            events = Events.from_times(batch.times_s or [], batch.fs, labels=batch.labels)
        accepted = await asyncio.to_thread(_router(request).submit_events, stream_id, events)
        logger.info("POST events stream=%s n=%d accepted=%s", stream_id, len(events), accepted)
        return {"stream_id": stream_id, "accepted": accepted, "events": len(events)}

    @app.put("/streams/{stream_id}/modality")
    async def put_modality(stream_id: str, request: Request,
                           modality: Modality = Query(..., description="ECG, EEG or EYE")) -> Dict[str, str]:
        _store(request).open_stream(stream_id, modality)
        return {"stream_id": stream_id, "modality": modality.value}

    @app.get("/streams/{stream_id}/snapshot")
    async def get_snapshot(
        stream_id: str,
        request: Request,
        wait_s: float = Query(0.0, ge=0.0, description="Wait up to wait_s for the router to go idle."),
    ) -> Dict[str, Any]:
        router, store = _router(request), _store(request)
        if wait_s > 0:
            await asyncio.to_thread(router.wait_idle, wait_s)
        store.drain(router.poll_updates)
        snapshot = store.prepare(stream_id)
        logger.info("GET snapshot stream=%s version=%d", stream_id, snapshot.version)
        return snapshot_to_json(snapshot)

    @app.put("/config/interp_fs")
    async def put_interp_fs(request: Request, value: float = Query(..., gt=0)) -> Dict[str, float]:
        _store(request).set_interp_fs(value)
        return {"interp_fs_hz": value}

    @app.post("/recording/start")
    async def recording_start(body: RecordingRequest, request: Request) -> Dict[str, Any]:
        accepted = await asyncio.to_thread(
            _router(request).start_recording, body.path, body.fs, body.stream_id
        )
        return {"accepted": accepted, "path": body.path}

    @app.post("/recording/stop")
    async def recording_stop(request: Request) -> Dict[str, Any]:
        return {"accepted": await asyncio.to_thread(_router(request).stop_recording)}

    @app.get("/recording")
    async def recording_status(request: Request) -> Dict[str, Any]:
        router, store = _router(request), _store(request)
        store.drain(router.poll_updates)
        last = store.recording
        return {
            "state": router.recording_state.value,
            "path": str(last.path) if last is not None and last.path is not None else None,
            "samples": last.samples if last is not None else 0,
            "message": last.message if last is not None else None,
        }

    return app


app = create_app()
