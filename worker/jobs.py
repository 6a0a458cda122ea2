"""
worker/jobs.py — Typed job payloads and the runner that executes them.

A job worker (queue consumer) hands a plain-data payload to JobRunner.run()
and records the returned status. The runner never mutates job state held
elsewhere and never retries: a deterministic input that failed validation
fails the same way a second time.

Payloads are a tagged union discriminated by ``kind``:

    preview          bounded-range render, stored under <key>_preview_<uuid>
    commit           whole-clip render, stored under <key>_warped_<ms>
    quantize         onsets → grid-aligned tempo markers
    transient_detect onsets, tempo estimate, optional identity markers
    analyze          signal metrics
    process_chain    dynamics stages (or a named preset), stored under
                     <key>_processed_<ms>

Output audio is written through the BufferStore only after the render has
fully succeeded, so a failed job never leaves a partial buffer behind.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Protocol, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from core.buffer import SampleBuffer
from core.dynamics.chain import DynamicsStage, stages_from_dicts
from core.dynamics.presets import preset_chain
from core.errors import EngineError, ValidationError
from core.warp.render import RenderRequest
from core.warp.types import MarkerType, WarpMarker
from infrastructure.metrics import record_job
from worker.engine import WarpEngine
from worker.pcm import decode_pcm, encode_pcm

logger = logging.getLogger(__name__)

AlgorithmName = Literal["phase_vocoder", "wsola", "high_quality"]
QualityName = Literal["fast", "normal", "high"]


class StorageError(EngineError):
    """The storage collaborator could not provide or accept a buffer."""

    kind = "storage"


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class MarkerModel(BaseModel):
    """One warp marker as it arrives from the persistence layer."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source_time: float = Field(..., ge=0)
    target_time: float = Field(..., ge=0)
    marker_type: MarkerType = MarkerType.NORMAL
    is_anchor: bool = False
    transient_strength: float | None = Field(None, ge=0, le=1)

    def to_marker(self) -> WarpMarker:
        return WarpMarker(
            id=self.id,
            source_time=self.source_time,
            target_time=self.target_time,
            marker_type=self.marker_type,
            is_anchor=self.is_anchor,
            transient_strength=self.transient_strength,
        )


class StageModel(BaseModel):
    """A processing stage in the {"type", "parameters"} wire format."""

    type: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class _JobBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storage_key: str = Field(..., min_length=1, description="Key of the source PCM buffer")


class _RenderJobBase(_JobBase):
    markers: list[MarkerModel] = Field(default_factory=list)
    pitch_shift: float = Field(0.0, ge=-24, le=24)
    preserve_formants: bool = True
    algorithm: AlgorithmName = "phase_vocoder"
    post_processing: list[StageModel] = Field(default_factory=list)

    def warp_markers(self) -> tuple[WarpMarker, ...]:
        return tuple(m.to_marker() for m in self.markers)

    def stages(self) -> tuple[DynamicsStage, ...]:
        return stages_from_dicts([s.model_dump() for s in self.post_processing])


class PreviewJob(_RenderJobBase):
    """Disposable render of [start_time, end_time] on the timeline."""

    kind: Literal["preview"] = "preview"
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., ge=0)
    quality: QualityName = "normal"

    @model_validator(mode="after")
    def _check_range(self) -> PreviewJob:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be greater than start_time")
        return self


class CommitJob(_RenderJobBase):
    """Whole-clip render stored as a new buffer."""

    kind: Literal["commit"] = "commit"
    quality: QualityName = "high"
    replace_original: bool = True


class QuantizeJob(_JobBase):
    kind: Literal["quantize"] = "quantize"
    target_bpm: float = Field(..., ge=20, le=300)
    strength: float = Field(1.0, ge=0, le=1)
    sensitivity: float = Field(0.5, ge=0, le=1)
    subdivision: int = Field(1, ge=1)
    grid_offset: float = Field(0.0, ge=0)


class TransientDetectJob(_JobBase):
    kind: Literal["transient_detect"] = "transient_detect"
    sensitivity: float = Field(0.5, ge=0, le=1)
    min_transient_gap: float = Field(0.05, ge=0.01, le=1)
    detect_beats: bool = True
    create_markers: bool = Field(
        False, description="Also return one unwarped marker per onset"
    )


class AnalyzeJob(_JobBase):
    kind: Literal["analyze"] = "analyze"


class ProcessChainJob(_JobBase):
    """Dynamics processing from explicit stages or a named preset."""

    kind: Literal["process_chain"] = "process_chain"
    stages: list[StageModel] = Field(default_factory=list)
    preset: str | None = None

    @model_validator(mode="after")
    def _check_source(self) -> ProcessChainJob:
        if not self.stages and self.preset is None:
            raise ValueError("Either stages or preset is required")
        if self.stages and self.preset is not None:
            raise ValueError("stages and preset are mutually exclusive")
        return self

    def resolved_stages(self) -> tuple[DynamicsStage, ...]:
        if self.preset is not None:
            return preset_chain(self.preset)
        return stages_from_dicts([s.model_dump() for s in self.stages])


JobPayload = Annotated[
    Union[PreviewJob, CommitJob, QuantizeJob, TransientDetectJob, AnalyzeJob, ProcessChainJob],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job(data: Mapping[str, Any]) -> JobPayload:
    """Validate a plain-data payload into its concrete job model.

    Raises:
        ValidationError: Unknown ``kind``, missing fields, or out-of-range values.
    """
    try:
        return _PAYLOAD_ADAPTER.validate_python(dict(data))
    except pydantic.ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"Invalid job payload: {details}") from exc


# ---------------------------------------------------------------------------
# Job status
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def advance(current: JobStatus, new: JobStatus) -> JobStatus:
    """Return ``new`` if the transition is allowed.

    Raises:
        ValidationError: For any transition other than queued → processing
            → completed | failed. Terminal states are final.
    """
    if new not in _TRANSITIONS[current]:
        raise ValidationError(f"Invalid job transition {current.value} → {new.value}")
    return new


@dataclass(frozen=True)
class JobOutcome:
    """What the worker records for a finished job."""

    job_id: str
    kind: str
    status: JobStatus
    result: dict[str, Any] | None = None
    error: dict[str, str] | None = None


# ---------------------------------------------------------------------------
# Storage collaborator
# ---------------------------------------------------------------------------


class BufferStore(Protocol):
    """External storage that resolves keys to PCM buffers."""

    def load(self, storage_key: str) -> SampleBuffer: ...

    def save(self, storage_key: str, data: bytes, channels: int, sample_rate: int) -> None: ...


class InMemoryBufferStore:
    """BufferStore keeping raw PCM bytes in a dict (tests, CLI, single process)."""

    def __init__(self, pcm_format: str = "float32") -> None:
        self.pcm_format = pcm_format
        self._items: dict[str, tuple[bytes, int, int]] = {}
        self._lock = threading.Lock()

    def load(self, storage_key: str) -> SampleBuffer:
        with self._lock:
            item = self._items.get(storage_key)
        if item is None:
            raise StorageError(f"No buffer stored under {storage_key!r}")
        data, channels, sample_rate = item
        return decode_pcm(data, channels, sample_rate, self.pcm_format)

    def save(self, storage_key: str, data: bytes, channels: int, sample_rate: int) -> None:
        with self._lock:
            self._items[storage_key] = (data, channels, sample_rate)

    def put_buffer(self, storage_key: str, buffer: SampleBuffer) -> None:
        self.save(
            storage_key, encode_pcm(buffer, self.pcm_format), buffer.channels, buffer.sample_rate
        )

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._items)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class JobRunner:
    """Execute job payloads against a WarpEngine and a BufferStore.

    Args:
        engine:     Engine used for all computation.
        store:      Storage collaborator for input and output buffers.
        pcm_format: Sample format of buffers written to the store.
        clock:      Seconds-since-epoch source used for output keys.
    """

    def __init__(
        self,
        engine: WarpEngine,
        store: BufferStore,
        pcm_format: str = "float32",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.store = store
        self.pcm_format = pcm_format
        self._clock = clock
        self._handlers: dict[str, Callable[[Any, threading.Event | None], dict[str, Any]]] = {
            "preview": self._run_preview,
            "commit": self._run_commit,
            "quantize": self._run_quantize,
            "transient_detect": self._run_transient_detect,
            "analyze": self._run_analyze,
            "process_chain": self._run_process_chain,
        }

    def run(
        self,
        job_id: str,
        payload: JobPayload | Mapping[str, Any],
        cancel: threading.Event | None = None,
    ) -> JobOutcome:
        """Run one job to a terminal status.

        Engine errors (including invalid payloads and cancellation) become a
        FAILED outcome carrying ``{"kind", "message"}``; nothing is retried.
        """
        if isinstance(payload, BaseModel):
            kind = payload.kind
        else:
            kind = str(payload.get("kind", "unknown"))
            if kind not in self._handlers:
                kind = "unknown"
        # metric label stays "unknown" until the payload has parsed
        label = "unknown"
        status = advance(JobStatus.QUEUED, JobStatus.PROCESSING)
        try:
            job = payload if isinstance(payload, BaseModel) else parse_job(payload)
            label = job.kind
            result = self._handlers[job.kind](job, cancel)
        except EngineError as exc:
            status = advance(status, JobStatus.FAILED)
            logger.warning("Job %s (%s) failed: %s", job_id, kind, exc)
            record_job(kind=label, status=status.value)
            return JobOutcome(job_id=job_id, kind=kind, status=status, error=exc.to_dict())

        status = advance(status, JobStatus.COMPLETED)
        logger.info("Job %s (%s) completed", job_id, kind)
        record_job(kind=label, status=status.value)
        return JobOutcome(job_id=job_id, kind=kind, status=status, result=result)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _save(self, key: str, buffer: SampleBuffer) -> None:
        self.store.save(
            key, encode_pcm(buffer, self.pcm_format), buffer.channels, buffer.sample_rate
        )

    def _timestamp_ms(self) -> int:
        return int(self._clock() * 1000)

    def _run_preview(self, job: PreviewJob, cancel: threading.Event | None) -> dict[str, Any]:
        buffer = self.store.load(job.storage_key)
        request = RenderRequest.preview(
            job.warp_markers(),
            job.start_time,
            job.end_time,
            pitch_shift_semitones=job.pitch_shift,
            preserve_formants=job.preserve_formants,
            algorithm=job.algorithm,
            quality=job.quality,
            post_processing=job.stages(),
        )
        result = self.engine.render(buffer, request, cancel)
        output_key = f"{job.storage_key}_preview_{uuid.uuid4().hex}"
        self._save(output_key, result.buffer)
        return {"output_key": output_key, **result.metadata()}

    def _run_commit(self, job: CommitJob, cancel: threading.Event | None) -> dict[str, Any]:
        buffer = self.store.load(job.storage_key)
        request = RenderRequest.commit(
            job.warp_markers(),
            pitch_shift_semitones=job.pitch_shift,
            preserve_formants=job.preserve_formants,
            algorithm=job.algorithm,
            quality=job.quality,
            replace_original=job.replace_original,
            post_processing=job.stages(),
        )
        result = self.engine.render(buffer, request, cancel)
        output_key = f"{job.storage_key}_warped_{self._timestamp_ms()}"
        self._save(output_key, result.buffer)
        return {"output_key": output_key, **result.metadata()}

    def _run_quantize(self, job: QuantizeJob, cancel: threading.Event | None) -> dict[str, Any]:
        buffer = self.store.load(job.storage_key)
        markers = self.engine.quantize(
            buffer,
            job.target_bpm,
            strength=job.strength,
            sensitivity=job.sensitivity,
            subdivision=job.subdivision,
            grid_offset=job.grid_offset,
        )
        return {
            "target_bpm": job.target_bpm,
            "marker_count": len(markers),
            "markers": [m.as_dict() for m in markers],
        }

    def _run_transient_detect(
        self, job: TransientDetectJob, cancel: threading.Event | None
    ) -> dict[str, Any]:
        buffer = self.store.load(job.storage_key)
        analysis = self.engine.analyze_transients(
            buffer,
            sensitivity=job.sensitivity,
            min_gap_sec=job.min_transient_gap,
            detect_beats=job.detect_beats,
        )
        result = analysis.as_dict()
        if job.create_markers:
            result["markers"] = [
                WarpMarker.create(o.time, o.time, transient_strength=o.strength).as_dict()
                for o in analysis.onsets
            ]
        return result

    def _run_analyze(self, job: AnalyzeJob, cancel: threading.Event | None) -> dict[str, Any]:
        return self.engine.analyze(self.store.load(job.storage_key)).as_dict()

    def _run_process_chain(
        self, job: ProcessChainJob, cancel: threading.Event | None
    ) -> dict[str, Any]:
        stages = job.resolved_stages()
        buffer = self.store.load(job.storage_key)
        processed = self.engine.process_chain(buffer, stages)
        output_key = f"{job.storage_key}_processed_{self._timestamp_ms()}"
        self._save(output_key, processed)
        return {
            "output_key": output_key,
            "stage_count": len(stages),
            "channels": processed.channels,
            "sample_rate": processed.sample_rate,
            "duration": processed.duration,
        }
