"""Turn user-selected asset lists into batches of jobs."""

import itertools
import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from .commands import resize_targets
from .filenames import stem_of
from .models import AssetRef, Position, ResizeTarget, Role, Trim
from .queue.models import Job, JobConfig

logger = logging.getLogger(__name__)

Combination = Tuple[int, ...]


def balanced_combinations(
    sources: Sequence[Sequence],
    count: int,
    priority: Optional[Sequence[int]] = None,
) -> List[Combination]:
    """Pick ``count`` distinct index combinations, one index per source.

    When ``count`` covers the whole cartesian product, the full product is
    returned in order. Otherwise each round takes the unused combination whose
    assets have been used least so far, so every asset appears about equally
    often, and the result is sorted by the sources listed in ``priority``
    (default: all sources, in order).

    Example:
        >>> balanced_combinations([["a1", "a2"], ["b1", "b2", "b3"]], 3)
        [(0, 0), (0, 2), (1, 1)]
    """
    if count <= 0 or not sources or any(len(s) == 0 for s in sources):
        return []

    everything = list(itertools.product(*(range(len(s)) for s in sources)))
    if count >= len(everything):
        return everything

    usage = [[0] * len(s) for s in sources]
    used = set()
    results: List[Combination] = []

    for _ in range(count):
        floor = sum(min(u) for u in usage)
        best, best_load = None, None
        for combo in everything:
            if combo in used:
                continue
            load = sum(usage[k][i] for k, i in enumerate(combo))
            if best_load is None or load < best_load:
                best, best_load = combo, load
                if load == floor:
                    break
        used.add(best)
        results.append(best)
        for k, i in enumerate(best):
            usage[k][i] += 1

    order = list(priority) if priority is not None else list(range(len(sources)))
    results.sort(key=lambda combo: tuple(combo[k] for k in order))
    return results


class CandidatePool:
    """Hands out optional assets round-robin, reshuffling after each full pass.

    Every candidate is used once per pass, so reuse stays even; pass a seeded
    ``random.Random`` for a reproducible order.
    """

    def __init__(self, candidates: Sequence[str], rng: Optional[random.Random] = None):
        self.candidates = list(candidates)
        self.rng = rng or random.Random()
        self._order: List[int] = []

    def __bool__(self) -> bool:
        return bool(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def next(self) -> Optional[Tuple[int, str]]:
        """Next ``(index, candidate)``, or None for an empty pool."""
        if not self.candidates:
            return None
        if not self._order:
            self._order = list(range(len(self.candidates)))
            self.rng.shuffle(self._order)
        index = self._order.pop()
        return index, self.candidates[index]


def merged_base_name(
    main_name: str, index: int, orientation: str, intro_name: Optional[str] = None
) -> str:
    """Output base name of a merge job.

    Dash-separated production names with more than seven fields are rewritten
    in place: the second field becomes ``D`` and the second-to-last the
    orientation marker (``H``/``V``). Other names are joined with ``_`` and
    get a 1-based, zero-padded sequence number.
    """
    seq = f"{index + 1:04d}"
    parts = main_name.split("-")
    if len(parts) > 7:
        parts[1] = "D"
        parts[-2] = "V" if orientation == "vertical" else "H"
        return "-".join(parts) + f"_{seq}"
    if intro_name:
        return f"{intro_name}_{main_name}_{seq}_{orientation}"
    return f"{main_name}_{seq}_{orientation}"


def plan_stitch_jobs(
    primaries: Sequence[str],
    secondaries: Sequence[str],
    count: int,
    output_dir: str,
    orientation: str = "landscape",
    trims: Optional[Dict[Role, Trim]] = None,
) -> List[Job]:
    """One job per balanced (primary, secondary) pair."""
    combos = balanced_combinations([primaries, secondaries], count)
    jobs = []
    for index, (a, b) in enumerate(combos):
        jobs.append(
            Job(
                index=index,
                mode="stitch",
                inputs=[
                    AssetRef(path=primaries[a], role=Role.PRIMARY, index=a + 1),
                    AssetRef(path=secondaries[b], role=Role.SECONDARY, index=b + 1),
                ],
                config=JobConfig(
                    orientation=orientation,
                    trims=dict(trims or {}),
                    base_name=f"{stem_of(primaries[a])}_{stem_of(secondaries[b])}",
                ),
                output_dir=output_dir,
            )
        )
    return jobs


def plan_merge_jobs(
    mains: Sequence[str],
    output_dir: str,
    intros: Sequence[str] = (),
    covers: Sequence[str] = (),
    backgrounds: Sequence[str] = (),
    count: Optional[int] = None,
    orientation: str = "horizontal",
    positions: Optional[Dict[Role, Position]] = None,
    trims: Optional[Dict[Role, Trim]] = None,
    rng: Optional[random.Random] = None,
) -> List[Job]:
    """Balanced (cover, intro, main) combinations; backgrounds come from a pool.

    Sort priority is cover, then intro, then main. ``count`` defaults to every
    combination.
    """
    if not mains:
        return []

    roles: List[Tuple[Role, Sequence[str]]] = []
    if covers:
        roles.append((Role.COVER, covers))
    if intros:
        roles.append((Role.INTRO, intros))
    roles.append((Role.PRIMARY, mains))

    sources = [paths for _, paths in roles]
    if count is None:
        count = 1
        for paths in sources:
            count *= len(paths)

    pool = CandidatePool(backgrounds, rng)
    jobs = []
    for index, combo in enumerate(balanced_combinations(sources, count)):
        inputs = [
            AssetRef(path=paths[i], role=role, index=i + 1)
            for (role, paths), i in zip(roles, combo)
        ]
        picked = pool.next()
        if picked is not None:
            bg_index, bg_path = picked
            inputs.append(AssetRef(path=bg_path, role=Role.BACKGROUND, index=bg_index + 1))

        by_role = {ref.role: ref.path for ref in inputs}
        intro = by_role.get(Role.INTRO)
        base_name = merged_base_name(
            stem_of(by_role[Role.PRIMARY]),
            index,
            orientation,
            stem_of(intro) if intro else None,
        )
        jobs.append(
            Job(
                index=index,
                mode="merge",
                inputs=inputs,
                config=JobConfig(
                    orientation=orientation,
                    positions=dict(positions or {}),
                    trims=dict(trims or {}),
                    base_name=base_name,
                ),
                output_dir=output_dir,
            )
        )
    return jobs


def plan_resize_jobs(
    videos: Sequence[str],
    mode: str,
    output_dir: str,
    blur_amount: int = 20,
    extra_presets: Optional[Dict[str, List[ResizeTarget]]] = None,
) -> List[Job]:
    """One job per (video, preset size) pair.

    Raises:
        UnsupportedModeError: If ``mode`` names no resize preset.
    """
    targets = resize_targets(mode, extra_presets)
    jobs = []
    for video_number, video in enumerate(videos):
        for target in targets:
            jobs.append(
                Job(
                    index=len(jobs),
                    mode="resize",
                    inputs=[AssetRef(path=video, role=Role.SOURCE, index=video_number + 1)],
                    config=JobConfig(
                        width=target.width,
                        height=target.height,
                        suffix=target.suffix,
                        blur_amount=blur_amount,
                        base_name=stem_of(video),
                        extra={"resize_mode": mode},
                    ),
                    output_dir=output_dir,
                )
            )
    return jobs


def plan_image_jobs(images: Sequence[str], output_dir: str) -> List[Job]:
    """One compression job per image."""
    return [
        Job(
            index=index,
            mode="image",
            inputs=[AssetRef(path=image, role=Role.SOURCE, index=index + 1)],
            config=JobConfig(base_name=stem_of(image), suffix="_compressed"),
            output_dir=output_dir,
        )
        for index, image in enumerate(images)
    ]


MATERIAL_EXPORTS = ("single", "grid", "cover")


def plan_material_jobs(
    images: Sequence[str],
    output_dir: str,
    logo: Optional[str] = None,
    exports: Sequence[str] = ("single", "grid"),
) -> List[Job]:
    """One material job per image: single square export, 3x3 grid and/or cover format.

    Raises:
        ValueError: If ``exports`` is empty or names an unknown export.
    """
    unknown = [name for name in exports if name not in MATERIAL_EXPORTS]
    if unknown or not exports:
        choices = ", ".join(MATERIAL_EXPORTS)
        raise ValueError(f"material exports must be chosen from {choices}, got {list(exports)}")

    jobs = []
    for index, image in enumerate(images):
        inputs = [AssetRef(path=image, role=Role.SOURCE, index=index + 1)]
        if logo:
            inputs.append(AssetRef(path=logo, role=Role.LOGO))
        jobs.append(
            Job(
                index=index,
                mode="material",
                inputs=inputs,
                config=JobConfig(base_name=stem_of(image), extra={"exports": list(exports)}),
                output_dir=output_dir,
            )
        )
    return jobs
