"""Collision-free staging and atomic commit of job outputs.

Many jobs write into the same output directory at once. If each job picked its
final name up front, two jobs could both see ``clip.mp4`` as free and one would
overwrite the other. Instead every job renders into its own hidden staging
directory inside the output directory, and only the commit step touches the
shared namespace: it picks a free name against the directory's current listing
and moves the file there with a single same-filesystem ``os.rename``.
"""

import logging
import os
import secrets
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Hashable, Optional, Union

from .errors import StagingError
from .filenames import unique_filename

logger = logging.getLogger(__name__)

# The name check and the rename must not interleave between two commits in the
# same process; across processes the rename is still atomic per file.
_commit_lock = threading.Lock()


@dataclass
class CommitResult:
    """Outcome of moving a staged file into the output directory."""
    success: bool
    final_path: Optional[Path] = None
    error: Optional[str] = None
    exception: Optional[Exception] = None


class SafeOutput:
    """Stages outputs for one output directory and commits them under unique names.

    Example:
        >>> stager = SafeOutput("/videos/out", prefix="merge")
        >>> tmp = stager.get_temp_output_path("clip.mp4", job_key=3)
        >>> # ... ffmpeg writes tmp ...
        >>> result = stager.commit(tmp)
        >>> stager.cleanup(job_key=3)
    """

    def __init__(self, output_dir: Union[str, Path], prefix: str = "task"):
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.temp_dir: Optional[Path] = None
        self.temp_dirs: Dict[Hashable, Path] = {}
        self._lock = threading.Lock()

    def _new_dir(self, stem: str, nbytes: int) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        while True:
            candidate = self.output_dir / f".{stem}_{secrets.token_hex(nbytes)}"
            try:
                candidate.mkdir()
            except FileExistsError:
                continue
            return candidate

    def create_temp_dir(self) -> Path:
        """Create the stager-wide staging directory ``.<prefix>_<16 hex>``."""
        self.temp_dir = self._new_dir(self.prefix, 8)
        return self.temp_dir

    def create_job_temp_dir(self, job_key: Hashable) -> Path:
        """Create a staging directory dedicated to ``job_key``."""
        temp_dir = self._new_dir(f"{self.prefix}_{job_key}", 6)
        self.temp_dirs[job_key] = temp_dir
        return temp_dir

    def get_temp_output_path(self, filename: str, job_key: Optional[Hashable] = None) -> Path:
        """Path inside a staging directory where a job should write ``filename``.

        The staging directory is created lazily; jobs that pass the same
        ``job_key`` share one directory.
        """
        with self._lock:
            if job_key is not None:
                temp_dir = self.temp_dirs.get(job_key) or self.create_job_temp_dir(job_key)
            else:
                temp_dir = self.temp_dir or self.create_temp_dir()
        return temp_dir / filename

    def commit(self, temp_path: Union[str, Path], keep_original: bool = False) -> CommitResult:
        """Move a staged file into the output directory under a free name.

        Args:
            temp_path: File previously written under a staging directory
            keep_original: Copy instead of rename (leaves the staged file in place)

        Returns:
            CommitResult; filesystem errors (permissions, disk full) are
            reported with ``success=False`` rather than raised.

        Raises:
            StagingError: If ``temp_path`` does not exist.
        """
        temp_path = Path(temp_path)
        if not temp_path.is_file():
            raise StagingError(f"staged file does not exist: {temp_path}")

        try:
            with _commit_lock:
                final_name = unique_filename(self.output_dir, temp_path.name)
                final_path = self.output_dir / final_name
                if keep_original:
                    shutil.copy2(temp_path, final_path)
                else:
                    os.rename(temp_path, final_path)
        except OSError as e:
            logger.warning("Commit of %s failed: %s", temp_path, e)
            return CommitResult(success=False, error=str(e), exception=e)

        logger.debug("Committed %s -> %s", temp_path, final_path)
        return CommitResult(success=True, final_path=final_path)

    def cleanup(self, job_key: Optional[Hashable] = None) -> None:
        """Remove the staging directory for ``job_key`` (or the stager-wide one)."""
        with self._lock:
            if job_key is not None and job_key in self.temp_dirs:
                target = self.temp_dirs.pop(job_key)
            elif job_key is None and self.temp_dir is not None:
                target, self.temp_dir = self.temp_dir, None
            else:
                return
        _remove_tree(target)

    def cleanup_all(self) -> None:
        """Remove every staging directory this stager created."""
        for job_key in list(self.temp_dirs):
            self.cleanup(job_key)
        self.cleanup()


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove staging directory %s: %s", path, e)


def with_safe_output(
    output_dir: Union[str, Path],
    filename: str,
    work_fn: Callable[[Path], None],
    job_key: Optional[Hashable] = None,
    prefix: str = "task",
) -> CommitResult:
    """Run ``work_fn(temp_path)``, commit its output, and always clean up.

    Errors raised by ``work_fn`` are reported in the returned CommitResult;
    a StagingError (misuse of the stager) propagates.
    """
    stager = SafeOutput(output_dir, prefix)
    try:
        temp_path = stager.get_temp_output_path(filename, job_key)
        work_fn(temp_path)
        return stager.commit(temp_path)
    except StagingError:
        raise
    except Exception as e:
        return CommitResult(success=False, error=str(e), exception=e)
    finally:
        stager.cleanup(job_key)
