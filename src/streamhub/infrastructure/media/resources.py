"""Temp file and directory tracking for sessions."""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class ResourceKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class ResourceRecord:
    path: Path
    kind: ResourceKind


class ResourceGuard:
    """Remembers temp artifacts and removes each of them at most once.

    ``release()`` forgets every record it touches, whether or not removal
    succeeded, so calling it again is a no-op.
    """

    def __init__(self, prefix: str = "streamhub-"):
        self.prefix = prefix
        self._records: Dict[Path, ResourceRecord] = {}

    def track_file(self, path: PathLike) -> Path:
        return self._track(Path(path), ResourceKind.FILE)

    def track_dir(self, path: PathLike) -> Path:
        return self._track(Path(path), ResourceKind.DIRECTORY)

    def _track(self, path: Path, kind: ResourceKind) -> Path:
        self._records.setdefault(path, ResourceRecord(path=path, kind=kind))
        return path

    def create_temp_file(self, suffix: str = "", data: Optional[bytes] = None) -> Path:
        """Create a tracked temp file, optionally filled with ``data``."""
        fd, name = tempfile.mkstemp(prefix=self.prefix, suffix=suffix)
        with os.fdopen(fd, "wb") as fh:
            if data:
                fh.write(data)
        return self.track_file(name)

    def create_temp_dir(self, prefix: Optional[str] = None) -> Path:
        return self.track_dir(tempfile.mkdtemp(prefix=prefix or self.prefix))

    @property
    def records(self) -> List[ResourceRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def release(self, kind: Optional[ResourceKind] = None) -> int:
        """Remove tracked resources, optionally only those of ``kind``.

        Returns:
            int: Number of resources actually removed
        """
        removed = 0
        for record in [r for r in self._records.values() if kind is None or r.kind == kind]:
            del self._records[record.path]
            try:
                if record.kind == ResourceKind.DIRECTORY:
                    shutil.rmtree(record.path)
                else:
                    record.path.unlink()
                removed += 1
                logger.debug(f"Removed temp {record.kind.value}: {record.path}")
            except FileNotFoundError:
                logger.debug(f"Temp {record.kind.value} already gone: {record.path}")
            except OSError as e:
                logger.warning(f"Failed to remove temp {record.kind.value} {record.path}: {e}")
        return removed
