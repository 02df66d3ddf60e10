import argparse
import logging
import random
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from tqdm import tqdm

from . import planner
from .config import resolve_config
from .errors import ProbeError, StitcherError
from .events import Event, EventChannel
from .ffmpeg_runner import check_ffmpeg
from .orchestrator import BatchOrchestrator, BatchSummary
from .probe import probe_video

VIDEO_EXTENSIONS = (".mp4", ".mov", ".mkv", ".avi", ".webm", ".m4v")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp")


def collect_files(paths: Iterable[str], extensions: Sequence[str]) -> List[str]:
    """Expand directories (non-recursive) into their matching files, sorted."""
    files: List[str] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(
                str(p)
                for p in sorted(path.iterdir())
                if p.is_file() and p.suffix.lower() in extensions
            )
        else:
            files.append(str(path))
    return files


class ConsoleReporter:
    """Event subscriber that drives a tqdm bar and prints failures."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.bar: Optional[tqdm] = None

    def __call__(self, event: Event) -> None:
        if event.type == "start":
            self.bar = tqdm(total=event.total, desc=event.mode or "jobs", unit="job")
        elif event.type == "log" and self.verbose:
            tqdm.write(f"[{event.index}] {event.message}")
        elif event.type == "progress":
            self._advance(event)
        elif event.type == "failed":
            tqdm.write(f"❌ job {event.index} failed: {event.error.splitlines()[0]}")
            self._advance(event)
        elif event.type == "finish" and self.bar is not None:
            self.bar.close()
            self.bar = None

    def _advance(self, event: Event) -> None:
        if self.bar is not None:
            self.bar.update(1)
            self.bar.set_postfix(done=event.done, failed=event.failed)


def _print_summary(summary: BatchSummary) -> None:
    print("\n" + "=" * 60)
    print("BATCH SUMMARY")
    print("=" * 60)
    print(f"Done:                 {summary.done}")
    print(f"Failed:               {summary.failed}")
    print(f"Total:                {summary.total}")
    print(f"Elapsed:              {summary.elapsed_seconds:.1f}s")
    print("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="video-stitcher", description="Batch video stitching, compositing and resizing"
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # Options shared by every batch command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--output", "-o", type=str, default="output", help="Output directory")
    common.add_argument("--concurrency", "-j", type=int, help="Maximum concurrent ffmpeg jobs")
    common.add_argument("--timeout", type=float, help="Per-job timeout in seconds")
    common.add_argument("--ffmpeg-path", type=str, help="ffmpeg binary to use")
    common.add_argument("--verbose", "-v", action="store_true", help="Show ffmpeg output")

    video = argparse.ArgumentParser(add_help=False)
    video.add_argument("--quality", choices=["low", "medium", "high"], help="Quality preset")

    # CHECK
    subparsers.add_parser("check", help="Verify ffmpeg is available")

    # PROBE
    probe_parser = subparsers.add_parser("probe", help="Show video metadata")
    probe_parser.add_argument("file", type=str, help="Video file")
    probe_parser.add_argument("--ffprobe-path", type=str, help="ffprobe binary to use")

    # STITCH
    stitch_parser = subparsers.add_parser(
        "stitch", parents=[common, video], help="Play A-side videos followed by B-side videos"
    )
    stitch_parser.add_argument("--a", nargs="+", required=True, help="A-side videos or folders")
    stitch_parser.add_argument("--b", nargs="+", required=True, help="B-side videos or folders")
    stitch_parser.add_argument("--count", type=int, help="Number of outputs (default: all pairs)")
    stitch_parser.add_argument(
        "--orientation", choices=["landscape", "portrait"], default="landscape"
    )

    # MERGE
    merge_parser = subparsers.add_parser(
        "merge", parents=[common, video], help="Layered composite of cover, intro and main"
    )
    merge_parser.add_argument("--main", nargs="+", required=True, help="Main videos or folders")
    merge_parser.add_argument("--intro", nargs="*", default=[], help="Intro videos")
    merge_parser.add_argument("--cover", nargs="*", default=[], help="Cover images")
    merge_parser.add_argument("--background", nargs="*", default=[], help="Background images")
    merge_parser.add_argument("--count", type=int, help="Number of outputs (default: all)")
    merge_parser.add_argument(
        "--orientation", choices=["horizontal", "vertical"], default="horizontal"
    )
    merge_parser.add_argument("--seed", type=int, help="Seed for background assignment")

    # RESIZE
    resize_parser = subparsers.add_parser(
        "resize", parents=[common], help="Reframe videos over a blurred background"
    )
    resize_parser.add_argument("videos", nargs="+", help="Videos or folders")
    resize_parser.add_argument("--mode", required=True, help="Resize preset (siya, fishing, ...)")
    resize_parser.add_argument("--blur", type=int, help="Background blur radius")

    # COMPRESS
    compress_parser = subparsers.add_parser(
        "compress", parents=[common], help="Compress images to a target size"
    )
    compress_parser.add_argument("images", nargs="+", help="Images or folders")
    compress_parser.add_argument("--target-kb", type=int, help="Target size in KB")

    # MATERIAL
    material_parser = subparsers.add_parser(
        "material", parents=[common], help="Export images as single, grid and cover material"
    )
    material_parser.add_argument("images", nargs="+", help="Images or folders")
    material_parser.add_argument("--logo", type=str, help="Logo overlaid on the single image")
    material_parser.add_argument(
        "--exports",
        nargs="+",
        choices=list(planner.MATERIAL_EXPORTS),
        default=["single", "grid"],
        help="What to export (default: single grid)",
    )

    return parser


def _run_batch(args: argparse.Namespace) -> int:
    cli_dict = {k: v for k, v in vars(args).items() if v is not None}
    config = resolve_config(cli_dict)

    channel = EventChannel()
    channel.subscribe(ConsoleReporter(verbose=args.verbose))
    orchestrator = BatchOrchestrator(config, channel=channel)

    if args.command == "stitch":
        primaries = collect_files(args.a, VIDEO_EXTENSIONS)
        secondaries = collect_files(args.b, VIDEO_EXTENSIONS)
        count = args.count or len(primaries) * len(secondaries)
        jobs = planner.plan_stitch_jobs(
            primaries, secondaries, count, args.output, orientation=args.orientation
        )
        run = orchestrator.run_stitch
    elif args.command == "merge":
        rng = random.Random(args.seed) if args.seed is not None else None
        jobs = planner.plan_merge_jobs(
            collect_files(args.main, VIDEO_EXTENSIONS),
            args.output,
            intros=collect_files(args.intro, VIDEO_EXTENSIONS),
            covers=collect_files(args.cover, IMAGE_EXTENSIONS),
            backgrounds=collect_files(args.background, IMAGE_EXTENSIONS),
            count=args.count,
            orientation=args.orientation,
            rng=rng,
        )
        run = orchestrator.run_merge
    elif args.command == "resize":
        blur = args.blur if args.blur is not None else config.resize.blur_amount
        jobs = planner.plan_resize_jobs(
            collect_files(args.videos, VIDEO_EXTENSIONS),
            args.mode,
            args.output,
            blur_amount=blur,
            extra_presets=config.resize.presets,
        )
        run = orchestrator.run_resize
    elif args.command == "material":
        jobs = planner.plan_material_jobs(
            collect_files(args.images, IMAGE_EXTENSIONS),
            args.output,
            logo=args.logo,
            exports=args.exports,
        )
        run = orchestrator.run_material
    else:
        jobs = planner.plan_image_jobs(collect_files(args.images, IMAGE_EXTENSIONS), args.output)

        def run(batch):
            return orchestrator.run_images(batch, args.target_kb)

    if not jobs:
        print("No inputs found.")
        return 1

    summary = run(jobs)
    _print_summary(summary)
    return 1 if summary.failed else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "check":
        print("Checking dependencies...")
        if check_ffmpeg():
            print("✅ ffmpeg found.")
            return 0
        print("❌ ffmpeg NOT found.")
        return 1

    if args.command == "probe":
        try:
            meta = probe_video(args.file, ffprobe_path=args.ffprobe_path)
        except ProbeError as e:
            print(f"❌ {e}")
            return 1
        print(f"File:         {args.file}")
        print(f"Resolution:   {meta.width}x{meta.height} ({meta.orientation}, {meta.aspect_ratio})")
        print(f"Duration:     {meta.duration:.2f}s")
        print(f"Frame rate:   {meta.fps:.2f}")
        print(f"Codec:        {meta.codec}")
        print(f"Bitrate:      {meta.bitrate}")
        return 0

    if args.command in ("stitch", "merge", "resize", "compress", "material"):
        try:
            return _run_batch(args)
        except (StitcherError, ValueError) as e:
            print(f"❌ {e}")
            return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
