"""Batch orchestration: jobs through builder, runner and stager, with events.

Each job of a batch is pushed onto the :class:`~video_stitcher.queue.TaskQueue`.
A running job builds its ffmpeg arguments, renders into a private staging
directory and commits the result into the shared output directory. Its
lifecycle is published on an :class:`~video_stitcher.events.EventChannel`.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from .commands import (
    LANDSCAPE,
    PORTRAIT,
    ImagePreviewRequest,
    LogoOverlayRequest,
    MergeRequest,
    ResizeRequest,
    StitchRequest,
    build,
    preview_dimensions,
    resize_targets,
)
from .errors import FfmpegCancelledError, MissingAssetError, StitcherError
from .events import (
    EventChannel,
    FailedEvent,
    FinishEvent,
    LogEvent,
    ProgressEvent,
    StartEvent,
    TaskStartEvent,
)
from .ffmpeg_runner import FfmpegRunner
from .filenames import generate_filename, stem_of
from .images import (
    compress_image,
    convert_cover,
    cover_target,
    grid_tiles,
    image_size,
    is_supported,
    needs_compression,
    save_jpeg_under,
)
from .models import PreviewOverride, Role, StitcherConfig
from .queue import Job, JobStatus, TaskQueue
from .safe_output import with_safe_output

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]
WorkFn = Callable[[Job, LogSink], Union[Path, List[Path]]]


@dataclass
class BatchSummary:
    """Aggregate outcome of one batch."""
    done: int
    failed: int
    total: int
    elapsed_seconds: float
    outputs: List[str] = field(default_factory=list)


@dataclass
class PreviewClip:
    """One rendered resize preview."""
    path: Path
    width: int
    height: int
    suffix: str


class JobFailedError(StitcherError, RuntimeError):
    """A job ran but its output could not be produced or committed."""


def runner_from_config(config: StitcherConfig) -> FfmpegRunner:
    """FfmpegRunner configured from the ``ffmpeg`` section."""
    ff = config.ffmpeg
    return FfmpegRunner(
        ffmpeg_path=ff.ffmpeg_path,
        global_timeout_s=ff.global_timeout_s,
        kill_grace_period_s=ff.kill_grace_period_s,
        log_tail_lines=ff.log_tail_lines,
        loglevel=ff.loglevel,
    )


class _Tally:
    """done/failed counters; update and publish under one lock."""

    def __init__(self, total: int):
        self.total = total
        self.done = 0
        self.failed = 0
        self.outputs: List[str] = []
        self.lock = threading.Lock()


class BatchOrchestrator:
    """Runs batches of planned jobs and publishes their lifecycle events.

    Example:
        >>> orchestrator = BatchOrchestrator(resolve_config())
        >>> orchestrator.channel.subscribe(print)
        >>> jobs = plan_stitch_jobs(fronts, backs, count=4, output_dir="out")
        >>> summary = orchestrator.run_stitch(jobs)
    """

    def __init__(
        self,
        config: Optional[StitcherConfig] = None,
        runner: Optional[FfmpegRunner] = None,
        channel: Optional[EventChannel] = None,
        queue: Optional[TaskQueue] = None,
    ):
        self.config = config or StitcherConfig()
        self.runner = runner or runner_from_config(self.config)
        self.channel = channel or EventChannel()
        self.queue = queue or TaskQueue(self.config.queue.concurrency)
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Kill running ffmpeg processes; their jobs are reported as failed."""
        self.cancel_event.set()

    # ------------------------------------------------------------------
    # Batch entry points
    # ------------------------------------------------------------------

    def run_stitch(self, jobs: List[Job]) -> BatchSummary:
        return self.run_batch(jobs, self._stitch_job, mode="stitch")

    def run_merge(self, jobs: List[Job]) -> BatchSummary:
        return self.run_batch(jobs, self._merge_job, mode="merge")

    def run_resize(self, jobs: List[Job]) -> BatchSummary:
        return self.run_batch(jobs, self._resize_job, mode="resize")

    def run_images(self, jobs: List[Job], target_size_kb: Optional[int] = None) -> BatchSummary:
        target_kb = target_size_kb or self.config.images.target_size_kb

        def work(job: Job, on_log: LogSink) -> Path:
            return self._image_job(job, on_log, target_kb)

        return self.run_batch(jobs, work, mode="image")

    def run_material(self, jobs: List[Job]) -> BatchSummary:
        return self.run_batch(jobs, self._material_job, mode="material")

    def run_batch(self, jobs: List[Job], work_fn: WorkFn, mode: Optional[str] = None) -> BatchSummary:
        """Run ``work_fn`` for every job under the concurrency cap.

        ``work_fn(job, on_log)`` returns the committed output path (or a list
        of paths) or raises; a raising job is reported as ``failed`` and never
        affects its siblings. Blocks until every job has settled.

        Raises:
            ValueError: If ``jobs`` is empty or a job has no output directory
                (raised before ``start`` is published).
        """
        if not jobs:
            raise ValueError("no jobs to run")
        for job in jobs:
            if not job.output_dir:
                raise ValueError(f"job {job.index} has no output directory")

        self.cancel_event.clear()
        tally = _Tally(len(jobs))
        started = time.monotonic()

        logger.info(
            "Starting %s batch: %d jobs, concurrency %d",
            mode or "custom", tally.total, self.queue.concurrency,
        )
        self.channel.publish(
            StartEvent(total=tally.total, concurrency=self.queue.concurrency, mode=mode)
        )

        futures = [
            self.queue.push(
                lambda job=job: self._run_job(job, work_fn, tally),
                job=job,
            )
            for job in jobs
        ]
        self.queue.join(futures)

        elapsed = round(time.monotonic() - started, 1)
        with tally.lock:
            summary = BatchSummary(
                tally.done, tally.failed, tally.total, elapsed, list(tally.outputs)
            )
        self.channel.publish(
            FinishEvent(
                done=summary.done,
                failed=summary.failed,
                total=summary.total,
                elapsed_seconds=elapsed,
            )
        )
        logger.info(
            "Batch finished: %d done, %d failed in %.1fs",
            summary.done, summary.failed, elapsed,
        )
        return summary

    def _run_job(self, job: Job, work_fn: WorkFn, tally: _Tally) -> None:
        index = job.index
        started = time.monotonic()
        self.channel.publish(TaskStartEvent(index=index))

        def on_log(line: str) -> None:
            self.channel.publish(LogEvent(index=index, message=line))

        try:
            result = work_fn(job, on_log)
        except Exception as e:
            with tally.lock:
                tally.failed += 1
                job.status = (
                    JobStatus.CANCELLED
                    if isinstance(e, FfmpegCancelledError)
                    else JobStatus.FAILED
                )
                self.channel.publish(
                    FailedEvent(
                        done=tally.done,
                        failed=tally.failed,
                        total=tally.total,
                        index=index,
                        error=str(e),
                    )
                )
            logger.warning("Job %d failed: %s", index, e)
            return

        outputs = result if isinstance(result, list) else [result]
        with tally.lock:
            tally.done += 1
            tally.outputs.extend(str(path) for path in outputs)
            job.status = JobStatus.COMPLETED
            self.channel.publish(
                ProgressEvent(
                    done=tally.done,
                    failed=tally.failed,
                    total=tally.total,
                    index=index,
                    output_path=str(outputs[0]),
                    elapsed_seconds=round(time.monotonic() - started, 1),
                )
            )
        logger.debug("Job %d committed %s", index, ", ".join(map(str, outputs)))

    # ------------------------------------------------------------------
    # Per-mode work
    # ------------------------------------------------------------------

    def _output_name(
        self, job: Job, extension: Optional[str] = None, suffix: Optional[str] = None
    ) -> str:
        out = self.config.output
        return generate_filename(
            job.output_dir,
            job.config.base_name or f"{job.mode}_{job.index + 1:04d}",
            suffix=job.config.suffix if suffix is None else suffix,
            extension=extension or out.video_extension,
            reserve_suffix_bytes=out.reserve_suffix_bytes,
            max_bytes=out.max_filename_bytes,
        )

    def _staged(self, job: Job, filename: str, render: Callable[[Path], None]) -> Path:
        result = with_safe_output(
            job.output_dir,
            filename,
            render,
            job_key=job.index,
            prefix=f"{self.config.output.temp_prefix}_{job.mode}",
        )
        if result.exception is not None:
            raise result.exception
        if not result.success:
            raise JobFailedError(result.error or "output was not committed")
        return result.final_path

    def _render(self, argv: List[str], on_log: LogSink) -> None:
        self.runner.run(argv, on_log=on_log, cancel_event=self.cancel_event)

    def _require(self, job: Job, role: Role) -> str:
        path = job.path_of(role)
        if not path:
            raise MissingAssetError(f"{job.mode} job {job.index} has no {role.value} input")
        return path

    def _stitch_request(self, job: Job, output: Union[str, Path]) -> StitchRequest:
        enc = self.config.encoding
        return StitchRequest(
            primary=self._require(job, Role.PRIMARY),
            secondary=self._require(job, Role.SECONDARY),
            output=str(output),
            orientation=job.config.orientation or "landscape",
            trim_primary=job.config.trims.get(Role.PRIMARY),
            trim_secondary=job.config.trims.get(Role.SECONDARY),
            quality=job.config.quality or enc.quality,
            preview=job.config.preview,
            fps=enc.fps,
            sample_rate=enc.audio_sample_rate,
        )

    def _merge_request(
        self, job: Job, output: Union[str, Path], preview: Optional[PreviewOverride] = None
    ) -> MergeRequest:
        enc = self.config.encoding
        trims = dict(job.config.trims)
        intro_tail = job.config.extra.get("intro_tail")
        return MergeRequest(
            main=self._require(job, Role.PRIMARY),
            output=str(output),
            intro=job.path_of(Role.INTRO),
            intro_tail=intro_tail,
            background=job.path_of(Role.BACKGROUND),
            cover=job.path_of(Role.COVER),
            positions=dict(job.config.positions),
            trims=trims,
            cover_duration=job.config.extra.get("cover_duration", 1.0),
            orientation=job.config.orientation or "horizontal",
            quality=job.config.quality or enc.quality,
            preview=preview or job.config.preview,
            fps=enc.fps,
            sample_rate=enc.audio_sample_rate,
        )

    def _stitch_job(self, job: Job, on_log: LogSink) -> Path:
        self._require(job, Role.PRIMARY)
        self._require(job, Role.SECONDARY)
        return self._staged(
            job,
            self._output_name(job),
            lambda temp: self._render(build(self._stitch_request(job, temp)), on_log),
        )

    def _merge_job(self, job: Job, on_log: LogSink) -> Path:
        self._require(job, Role.PRIMARY)
        return self._staged(
            job,
            self._output_name(job),
            lambda temp: self._render(build(self._merge_request(job, temp)), on_log),
        )

    def _resize_job(self, job: Job, on_log: LogSink) -> Path:
        source = self._require(job, Role.SOURCE)
        cfg = job.config
        if cfg.width is None or cfg.height is None:
            raise ValueError(f"resize job {job.index} has no target size")
        blur = cfg.blur_amount if cfg.blur_amount is not None else self.config.resize.blur_amount

        def render(temp: Path) -> None:
            request = ResizeRequest(
                input=source,
                output=str(temp),
                width=cfg.width,
                height=cfg.height,
                blur_amount=blur,
            )
            self._render(build(request), on_log)

        return self._staged(job, self._output_name(job), render)

    def _image_job(self, job: Job, on_log: LogSink, target_size_kb: int) -> Path:
        source = Path(self._require(job, Role.SOURCE))
        if not is_supported(source):
            raise ValueError(f"unsupported image type: {source.name}")

        images = self.config.images
        if needs_compression(source, target_size_kb):
            filename = self._output_name(job, extension=".jpg")
        else:
            # Copied unchanged, so the original name and extension are kept.
            filename = self._output_name(job, extension=source.suffix, suffix="")

        def render(temp: Path) -> None:
            result = compress_image(
                source, temp, target_size_kb, images.default_quality, images.max_iterations
            )
            if result.skipped:
                on_log(f"{source.name} is already within {target_size_kb} KB, copied")
            else:
                on_log(
                    f"{source.name}: {result.original_size // 1024} KB -> "
                    f"{result.compressed_size // 1024} KB (quality {result.quality})"
                )

        return self._staged(job, filename, render)

    def _material_job(self, job: Job, on_log: LogSink) -> List[Path]:
        """Export a source image as material: square single, 3x3 grid, cover format.

        Each export is staged and committed on its own; a failure stops the
        job but keeps exports already committed.
        """
        source = Path(self._require(job, Role.SOURCE))
        if not is_supported(source):
            raise ValueError(f"unsupported image type: {source.name}")
        logo = job.path_of(Role.LOGO)
        exports = job.config.extra.get("exports", ["single", "grid"])
        images = self.config.images
        outputs: List[Path] = []

        if "single" in exports:

            def render_single(temp: Path) -> None:
                if logo:
                    request = LogoOverlayRequest(
                        image=str(source),
                        logo=logo,
                        output=str(temp),
                        size=images.material_size,
                        logo_width=images.logo_width,
                    )
                else:
                    request = ImagePreviewRequest(
                        image=str(source), output=str(temp), size=images.material_size
                    )
                self._render(build(request), on_log)
                if needs_compression(temp, images.material_target_kb):
                    compress_image(
                        temp, temp, images.material_target_kb,
                        images.default_quality, images.max_iterations,
                    )

            name = self._output_name(job, extension=".jpg", suffix="_single")
            outputs.append(self._staged(job, name, render_single))

        if "grid" in exports:
            tiles = grid_tiles(source, images.material_size)
            for number, tile in enumerate(tiles, start=1):
                name = self._output_name(job, extension=".jpg", suffix=f"_grid{number}")
                outputs.append(
                    self._staged(
                        job,
                        name,
                        lambda temp, tile=tile: save_jpeg_under(
                            tile, temp, images.material_target_kb,
                            images.default_quality, images.max_iterations,
                        ),
                    )
                )
            on_log(f"{source.name}: {len(tiles)} grid tiles of {tiles[0].width}x{tiles[0].height}")

        if "cover" in exports:
            _, _, suffix = cover_target(*image_size(source))
            name = self._output_name(job, extension=".jpg", suffix=suffix)
            outputs.append(
                self._staged(
                    job, name, lambda temp: convert_cover(source, temp, images.default_quality)
                )
            )

        if not outputs:
            raise ValueError(f"material job {job.index} has no exports")
        return outputs

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------

    def _preview_defaults(self, preview: Optional[PreviewOverride] = None) -> PreviewOverride:
        defaults = self.config.encoding.preview
        data = preview.model_dump(exclude_none=True) if preview else {}
        data.setdefault("crf", defaults.crf)
        data.setdefault("preset", defaults.preset)
        data.setdefault("audio_bitrate", defaults.audio_bitrate)
        return PreviewOverride(**data)

    def preview_merge(
        self,
        job: Job,
        preview: Optional[PreviewOverride] = None,
        output_path: Optional[Union[str, Path]] = None,
        on_log: Optional[LogSink] = None,
    ) -> Path:
        """Render a low-resolution version of a merge job.

        The graph is the same as the final render; only dimensions and
        encoder numbers differ. Written directly to ``output_path`` (default:
        a uniquely named file in the job's output directory).
        """
        override = self._preview_defaults(preview)
        if override.width is None or override.height is None:
            orientation = job.config.orientation or "horizontal"
            base = LANDSCAPE if orientation == "horizontal" else PORTRAIT
            width, height = preview_dimensions(
                *base, self.config.encoding.preview.max_dimension
            )
            override = override.model_copy(update={"width": width, "height": height})
        if output_path is None:
            output_path = Path(job.output_dir) / f"preview_{uuid.uuid4().hex[:8]}.mp4"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        argv = build(self._merge_request(job, output_path, override))
        self.runner.run(argv, on_log=on_log, cancel_event=self.cancel_event)
        return output_path

    def preview_resize(
        self,
        input_path: Union[str, Path],
        mode: str,
        blur_amount: Optional[int] = None,
        temp_dir: Optional[Union[str, Path]] = None,
        on_log: Optional[LogSink] = None,
    ) -> List[PreviewClip]:
        """Render a short, downscaled clip for every size of a resize preset.

        Raises:
            UnsupportedModeError: If ``mode`` names no resize preset.
            FfmpegError: If a preview render fails.
        """
        targets = resize_targets(mode, self.config.resize.presets)
        blur = blur_amount if blur_amount is not None else self.config.resize.blur_amount
        preview = self.config.encoding.preview
        out_dir = Path(temp_dir) if temp_dir else Path(input_path).parent
        out_dir.mkdir(parents=True, exist_ok=True)

        clips = []
        stem = stem_of(input_path)
        for target in targets:
            clip_path = out_dir / f"preview_{stem}{target.suffix}_{uuid.uuid4().hex[:8]}.mp4"
            request = ResizeRequest(
                input=str(input_path),
                output=str(clip_path),
                width=target.width,
                height=target.height,
                blur_amount=blur,
                preview=True,
                preview_seconds=preview.clip_seconds,
                preview_max_dimension=preview.max_dimension,
            )
            self.runner.run(build(request), on_log=on_log, cancel_event=self.cancel_event)
            clips.append(PreviewClip(clip_path, target.width, target.height, target.suffix))
        return clips
