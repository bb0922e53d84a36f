import os
from pathlib import Path
from typing import Iterable, List, NamedTuple, Set
from convwatch.domain.errors import DirectoryListError

class ScanResult(NamedTuple):
    watched: Set[Path]
    discovered: List[Path]
    vanished: List[Path]

class FileScanner:
    """Lists convertible files at the top level of the watched directory.

    Extension matching is case-sensitive and looks at the suffix only. File
    size is not checked here; readiness is decided by the conversion task.
    """

    def __init__(self, extensions: List[str]):
        self.extensions = {ext if ext.startswith(".") else f".{ext}" for ext in extensions}

    def scan(self, directory: Path) -> Set[Path]:
        """Returns the watched set: allowed-extension regular files in directory."""
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            raise DirectoryListError(f"Cannot list {directory}: {exc}") from exc

        watched = set()
        for entry in entries:
            path = Path(entry.path)
            if path.suffix not in self.extensions:
                continue
            try:
                if not entry.is_file():
                    continue
            except OSError:
                # Vanished between listing and the type check
                continue
            watched.add(path)
        return watched

    @staticmethod
    def exists(path: Path) -> bool:
        """False only when stat reports the path does not exist."""
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
        except OSError:
            return True
        return True

    def poll(self, directory: Path, known: Iterable[Path]) -> ScanResult:
        """One poll tick: new paths to register and known paths gone from disk."""
        known = set(known)
        watched = self.scan(directory)
        discovered = sorted(watched - known)
        vanished = sorted(p for p in known if not self.exists(p))
        return ScanResult(watched=watched, discovered=discovered, vanished=vanished)
