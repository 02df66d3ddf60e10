"""Tests for job planning."""

import random
from collections import Counter

import pytest

from video_stitcher.errors import UnsupportedModeError
from video_stitcher.models import Role
from video_stitcher.planner import (
    CandidatePool,
    balanced_combinations,
    merged_base_name,
    plan_image_jobs,
    plan_material_jobs,
    plan_merge_jobs,
    plan_resize_jobs,
    plan_stitch_jobs,
)


class TestBalancedCombinations:
    """Test even use of assets across combinations."""

    def test_full_product_when_count_covers_it(self):
        combos = balanced_combinations([["a1", "a2"], ["b1", "b2"]], 10)
        assert combos == [(0, 0), (0, 1), (1, 0), (1, 1)]

    def test_distinct_and_balanced(self):
        sources = [["a"] * 4, ["b"] * 5]
        combos = balanced_combinations(sources, 8)

        assert len(combos) == len(set(combos)) == 8
        first = Counter(c[0] for c in combos)
        second = Counter(c[1] for c in combos)
        assert max(first.values()) - min(first.values()) <= 1
        assert max(second.values()) - min(second.values()) <= 1

    def test_sorted_by_priority(self):
        combos = balanced_combinations([["a"] * 3, ["b"] * 3], 4, priority=[1, 0])
        assert combos == sorted(combos, key=lambda c: (c[1], c[0]))

    def test_docstring_example(self):
        assert balanced_combinations([["a1", "a2"], ["b1", "b2", "b3"]], 3) == [(0, 0), (0, 2), (1, 1)]

    @pytest.mark.parametrize("sources,count", [([], 3), ([["a"], []], 2), ([["a"]], 0)])
    def test_empty(self, sources, count):
        assert balanced_combinations(sources, count) == []


class TestCandidatePool:
    def test_every_candidate_used_once_per_pass(self):
        pool = CandidatePool(["x", "y", "z"], random.Random(1))
        first_pass = {pool.next()[1] for _ in range(3)}
        second_pass = {pool.next()[1] for _ in range(3)}
        assert first_pass == second_pass == {"x", "y", "z"}

    def test_seeded_pools_agree(self):
        a = CandidatePool(["x", "y", "z"], random.Random(7))
        b = CandidatePool(["x", "y", "z"], random.Random(7))
        assert [a.next() for _ in range(6)] == [b.next() for _ in range(6)]

    def test_empty_pool(self):
        pool = CandidatePool([])
        assert not pool
        assert pool.next() is None


class TestMergedBaseName:
    def test_plain_name(self):
        assert merged_base_name("clip", 0, "horizontal") == "clip_0001_horizontal"

    def test_with_intro(self):
        assert merged_base_name("clip", 11, "vertical", "hello") == "hello_clip_0012_vertical"

    def test_production_name_rewritten(self):
        name = "P-X-2024-01-02-game-L-final"
        assert merged_base_name(name, 2, "vertical") == "P-D-2024-01-02-game-V-final_0003"
        assert merged_base_name(name, 0, "horizontal") == "P-D-2024-01-02-game-H-final_0001"


class TestPlanners:
    """Test the per-mode planners."""

    def test_stitch_jobs(self, tmp_path):
        jobs = plan_stitch_jobs(["/v/a1.mp4", "/v/a2.mp4"], ["/v/b1.mp4"], 5, str(tmp_path))

        assert [j.index for j in jobs] == [0, 1]
        assert jobs[0].mode == "stitch"
        assert jobs[0].path_of(Role.PRIMARY) == "/v/a1.mp4"
        assert jobs[0].path_of(Role.SECONDARY) == "/v/b1.mp4"
        assert jobs[0].config.base_name == "a1_b1"
        assert jobs[0].config.orientation == "landscape"
        assert len({j.id for j in jobs}) == 2

    def test_merge_jobs(self, tmp_path):
        jobs = plan_merge_jobs(
            ["/v/m1.mp4", "/v/m2.mp4"],
            str(tmp_path),
            intros=["/v/intro.mp4"],
            covers=["/v/c1.png", "/v/c2.png"],
            backgrounds=["/v/bg.jpg"],
            orientation="vertical",
            rng=random.Random(0),
        )

        assert len(jobs) == 4
        assert [j.index for j in jobs] == [0, 1, 2, 3]
        # Sorted by cover first
        assert [j.path_of(Role.COVER) for j in jobs] == ["/v/c1.png", "/v/c1.png", "/v/c2.png", "/v/c2.png"]
        assert all(j.path_of(Role.BACKGROUND) == "/v/bg.jpg" for j in jobs)
        assert jobs[0].config.base_name == "intro_m1_0001_vertical"

    def test_merge_count_limits_jobs(self, tmp_path):
        jobs = plan_merge_jobs(["/v/m1.mp4", "/v/m2.mp4", "/v/m3.mp4"], str(tmp_path), count=2)
        assert len(jobs) == 2
        assert all(j.path_of(Role.BACKGROUND) is None for j in jobs)

    def test_merge_without_mains(self, tmp_path):
        assert plan_merge_jobs([], str(tmp_path)) == []

    def test_resize_jobs_one_per_size(self, tmp_path):
        jobs = plan_resize_jobs(["/v/x.mp4", "/v/y.mp4"], "fishing", str(tmp_path), blur_amount=5)

        assert len(jobs) == 4
        assert [j.index for j in jobs] == [0, 1, 2, 3]
        assert [(j.config.width, j.config.height) for j in jobs[:2]] == [(1080, 1920), (1920, 1920)]
        assert jobs[1].config.suffix == "_1920x1920"
        assert jobs[3].config.base_name == "y"
        assert jobs[0].config.blur_amount == 5

    def test_resize_unknown_mode(self, tmp_path):
        with pytest.raises(UnsupportedModeError):
            plan_resize_jobs(["/v/x.mp4"], "cinema", str(tmp_path))

    def test_image_jobs(self, tmp_path):
        jobs = plan_image_jobs(["/i/a.png", "/i/b.jpg"], str(tmp_path))
        assert [j.mode for j in jobs] == ["image", "image"]
        assert jobs[1].config.base_name == "b"
        assert jobs[1].config.suffix == "_compressed"

    def test_material_jobs(self, tmp_path):
        jobs = plan_material_jobs(
            ["/i/a.png", "/i/b.jpg"], str(tmp_path), logo="/i/logo.png", exports=["grid", "cover"]
        )

        assert [j.mode for j in jobs] == ["material", "material"]
        assert [j.index for j in jobs] == [0, 1]
        assert jobs[0].path_of(Role.SOURCE) == "/i/a.png"
        assert jobs[1].path_of(Role.LOGO) == "/i/logo.png"
        assert jobs[1].config.base_name == "b"
        assert jobs[0].config.extra["exports"] == ["grid", "cover"]

    def test_material_jobs_default_exports_without_logo(self, tmp_path):
        job = plan_material_jobs(["/i/a.png"], str(tmp_path))[0]
        assert job.config.extra["exports"] == ["single", "grid"]
        assert job.path_of(Role.LOGO) is None

    @pytest.mark.parametrize("exports", [[], ["poster"], ["single", "gif"]])
    def test_material_jobs_reject_bad_exports(self, tmp_path, exports):
        with pytest.raises(ValueError, match="material exports"):
            plan_material_jobs(["/i/a.png"], str(tmp_path), exports=exports)
