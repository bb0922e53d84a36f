import logging
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from convwatch.domain.models import ConversionOutcome, ConversionResult, Job, JobStatus

logger = logging.getLogger(__name__)

_OUTCOME_STATUS = {
    ConversionOutcome.COMPLETED: JobStatus.COMPLETED,
    ConversionOutcome.CANCELLED: JobStatus.CANCELLED,
    ConversionOutcome.FAILED: JobStatus.FAILED,
}


class JobTable:
    """Deduplicating registry of discovered files.

    Owned by the lifecycle controller thread: nothing else mutates it, so it
    carries no lock. A path has at most one entry. Finished entries are kept
    until the file disappears, which is what stops a file that is still on
    disk from being converted a second time.
    """

    def __init__(self):
        self._jobs: Dict[Path, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, path: Path) -> bool:
        return path in self._jobs

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs.values()))

    def get(self, path: Path) -> Optional[Job]:
        return self._jobs.get(path)

    def paths(self) -> List[Path]:
        return list(self._jobs)

    def live_jobs(self) -> List[Job]:
        """Jobs that have not reached a terminal outcome."""
        return [job for job in self._jobs.values() if not job.finished]

    def register(self, path: Path) -> Tuple[Job, bool]:
        """Returns (job, created). Registering a known path returns its entry."""
        existing = self._jobs.get(path)
        if existing is not None:
            return existing, False
        job = Job(input_path=path)
        self._jobs[path] = job
        return job, True

    def discard(self, path: Path) -> None:
        """Forgets a path that was never handed to the dispatcher."""
        self._jobs.pop(path, None)

    def cancel_and_remove(self, path: Path) -> None:
        job = self._jobs.pop(path, None)
        if job is None:
            return
        job.cancel()
        if not job.finished:
            job.status = JobStatus.CANCELLED

    def cancel_all(self) -> int:
        """Cancels every job and empties the table. Returns how many were live."""
        live = 0
        for job in self._jobs.values():
            if not job.finished:
                live += 1
                job.status = JobStatus.CANCELLED
            job.cancel()
        self._jobs.clear()
        return live

    def mark_started(self, job: Job) -> bool:
        if self._jobs.get(job.input_path) is not job:
            return False
        job.status = JobStatus.CONVERTING
        return True

    def finish(self, job: Job, result: ConversionResult, size_of: Optional[Callable[[Path], Optional[int]]] = None) -> bool:
        """Records a terminal outcome for ``job`` if it still owns its path.

        A job whose path was removed (and possibly re-registered) in the
        meantime is stale and ignored.
        """
        if self._jobs.get(job.input_path) is not job:
            return False
        job.result = result
        job.status = _OUTCOME_STATUS[result.outcome]
        if result.error_kind == "CopyTimeout" and size_of is not None:
            job.settled_size = size_of(job.input_path)
        return True

    def release_changed(self, size_of: Callable[[Path], Optional[int]]) -> List[Path]:
        """Drops CopyTimeout failures whose file size moved since the timeout.

        Released paths are picked up again by the next scan.
        """
        released = []
        for path, job in list(self._jobs.items()):
            if job.result is None or job.result.error_kind != "CopyTimeout":
                continue
            if size_of(path) != job.settled_size:
                del self._jobs[path]
                released.append(path)
                logger.info(f"JOB_RELEASED: {path.name} (size changed after copy timeout)")
        return released
