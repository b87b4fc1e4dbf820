"""
Non-destructive file relocation.

Moves files into rule destinations, the review holding folder, or (for
byte-identical duplicates) the quarantine folder. Nothing here ever deletes a
user file outright: a relocation either succeeds, fails with the source left
in place, or redirects the source into quarantine.
"""

from __future__ import annotations

import errno
import os
import shutil
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol, Set

from loguru import logger

from app.utils.helpers import hash_file, is_relative_to, numbered_name, quarantine_timestamp
from domains.file_ingest.errors import RelocationError

MAX_UNIQUE_NAME_ATTEMPTS = 1000

# link() failures that mean "use a copy instead"
_LINK_UNSUPPORTED = frozenset({errno.EXDEV, errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EMLINK})


class RelocationOutcome(str, Enum):
    MOVED = "moved"
    RENAMED = "renamed"        # moved under name(N).ext
    DUPLICATE = "duplicate"    # identical file already present; source quarantined
    IN_PLACE = "in_place"      # source already is the destination
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RelocationResult:
    """Where a file ended up."""

    outcome: RelocationOutcome
    path: Optional[Path] = None
    details: Optional[str] = None
    quarantine_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.outcome is not RelocationOutcome.FAILED


# =====================================================
# Scoped access
# =====================================================

class ResourceAccessor(Protocol):
    """Grants temporary access to folders outside the watched root."""

    def begin_access(self, path: Path) -> Optional[object]:
        ...

    def end_access(self, handle: object) -> None:
        ...


class DirectAccessor:
    """Default accessor: grants a handle for folders the process can write to."""

    def __init__(self):
        self._active: Set[Path] = set()
        self._lock = threading.Lock()

    def begin_access(self, path: Path) -> Optional[object]:
        ancestor = path
        while not ancestor.exists() and ancestor != ancestor.parent:
            ancestor = ancestor.parent
        if not os.access(ancestor, os.W_OK):
            logger.debug(f"No write access for: {path}")
            return None
        with self._lock:
            self._active.add(path)
        logger.debug(f"Started accessing: {path}")
        return path

    def end_access(self, handle: object) -> None:
        with self._lock:
            self._active.discard(handle)
        logger.debug(f"Stopped accessing: {handle}")

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)


# =====================================================
# Move primitives
# =====================================================

def move_file(source: Path, destination: Path) -> None:
    """
    Move ``source`` to ``destination`` without ever overwriting.

    The destination is created exclusively: a hard link on the same volume,
    otherwise an exclusive-create copy. The source is removed only once the
    destination holds the complete file.

    Raises:
        RelocationError: If the destination exists or the move failed; the
            source is left untouched
    """
    try:
        os.link(source, destination)
    except FileExistsError as e:
        raise RelocationError(f"Destination already exists: {destination}") from e
    except OSError as e:
        if e.errno not in _LINK_UNSUPPORTED:
            raise RelocationError(f"Failed to move {source} -> {destination}: {e}") from e
        _copy_exclusive(source, destination)

    try:
        source.unlink()
    except OSError as e:
        # Destination is complete; keep both rather than lose either
        logger.warning(f"Moved {source.name} but could not remove the source: {e}")


def _copy_exclusive(source: Path, destination: Path) -> None:
    try:
        target = destination.open("xb")
    except FileExistsError as e:
        raise RelocationError(f"Destination already exists: {destination}") from e
    except OSError as e:
        raise RelocationError(f"Cannot create {destination}: {e}") from e

    try:
        with target, source.open("rb") as src:
            shutil.copyfileobj(src, target)
        shutil.copystat(source, destination)
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise RelocationError(f"Failed to copy {source} -> {destination}: {e}") from e


def unique_destination(candidate: Path, limit: int = MAX_UNIQUE_NAME_ATTEMPTS) -> Path:
    """
    Return ``candidate`` or the first free ``name(N).ext`` sibling.

    Raises:
        RelocationError: If ``limit`` numbered names are all taken
    """
    if not candidate.exists():
        return candidate

    for counter in range(1, limit + 1):
        renamed = numbered_name(candidate, counter)
        if not renamed.exists():
            return renamed

    logger.error(f"Too many duplicates for file: {candidate.name}")
    raise RelocationError(f"No free name for {candidate.name} after {limit} attempts")


# =====================================================
# Relocator
# =====================================================

class FileRelocator:
    """Physical moves, duplicate resolution and the holding areas."""

    def __init__(
        self,
        watch_root: Path,
        review_dir: Path,
        quarantine_dir: Path,
        accessor: Optional[ResourceAccessor] = None,
        max_name_attempts: int = MAX_UNIQUE_NAME_ATTEMPTS,
    ):
        self.watch_root = watch_root
        self.review_dir = review_dir
        self.quarantine_dir = quarantine_dir
        self.accessor = accessor or DirectAccessor()
        self.max_name_attempts = max_name_attempts
        # Serialises choosing a free name and claiming it; quarantine re-enters
        self._lock = threading.RLock()

    def relocate(self, source: Path, folder: Path) -> RelocationResult:
        """
        Move ``source`` into ``folder``, resolving name collisions by content.

        Args:
            source: File to move
            folder: Destination folder, created if missing

        Returns:
            RelocationResult describing the outcome
        """
        handle = None
        if not is_relative_to(folder, self.watch_root):
            handle = self.accessor.begin_access(folder)
            if handle is None:
                logger.warning(f"No scoped access for {folder} - trying direct access")

        try:
            with self._lock:
                return self._relocate(source, folder)
        finally:
            if handle is not None:
                self.accessor.end_access(handle)

    def _relocate(self, source: Path, folder: Path) -> RelocationResult:
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create destination folder {folder}: {e}")
            return RelocationResult(RelocationOutcome.FAILED, details=f"Cannot create folder: {e}")

        candidate = folder / source.name
        if candidate.exists() and _same_file(source, candidate):
            logger.debug(f"{source.name} is already at its destination")
            return RelocationResult(RelocationOutcome.IN_PLACE, candidate, "Already in place")

        outcome = RelocationOutcome.MOVED
        try:
            if candidate.exists():
                source_hash = hash_file(source)
                dest_hash = hash_file(candidate)

                if source_hash is not None and source_hash == dest_hash:
                    logger.info(f"Duplicate detected (same hash), quarantining source: {source.name}")
                    quarantined = self.quarantine(source)
                    return RelocationResult(
                        RelocationOutcome.DUPLICATE,
                        candidate,
                        f"Duplicate of {candidate}",
                        quarantine_path=quarantined,
                    )

                if source_hash is None:
                    raise RelocationError(f"Cannot hash {source.name}")

                candidate = unique_destination(candidate, self.max_name_attempts)
                outcome = RelocationOutcome.RENAMED
                logger.info(f"File exists with different content, renaming to: {candidate.name}")

            move_file(source, candidate)
        except RelocationError as e:
            logger.error(f"Failed to relocate {source.name}: {e}")
            return RelocationResult(RelocationOutcome.FAILED, details=str(e))

        logger.info(f"Moved {source.name} to {folder}")
        return RelocationResult(outcome, candidate)

    def to_review(self, source: Path) -> RelocationResult:
        """Move an unclassified file into the review folder, renaming on collision."""
        try:
            self.review_dir.mkdir(parents=True, exist_ok=True)
            candidate = self.review_dir / source.name
            with self._lock:
                if candidate.exists() and _same_file(source, candidate):
                    return RelocationResult(RelocationOutcome.IN_PLACE, candidate, "Already in review")
                outcome = RelocationOutcome.RENAMED if candidate.exists() else RelocationOutcome.MOVED
                candidate = unique_destination(candidate, self.max_name_attempts)
                move_file(source, candidate)
        except (OSError, RelocationError) as e:
            logger.error(f"Failed to move to review folder: {e}")
            return RelocationResult(RelocationOutcome.FAILED, details=str(e))

        logger.info(f"Moved {source.name} to review folder")
        return RelocationResult(outcome, candidate)

    def quarantine(self, source: Path) -> Path:
        """
        Move a file into quarantine as ``<timestamp>_<name>``.

        Raises:
            RelocationError: If the file could not be moved
        """
        try:
            self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RelocationError(f"Cannot create quarantine folder: {e}") from e

        with self._lock:
            target = unique_destination(
                self.quarantine_dir / f"{quarantine_timestamp()}_{source.name}",
                self.max_name_attempts,
            )
            move_file(source, target)
        logger.info(f"Moved {source.name} to quarantine")
        return target

    def review_files(self) -> List[Path]:
        """Files currently waiting in the review folder."""
        try:
            return sorted(p for p in self.review_dir.iterdir() if p.is_file() and not p.name.startswith('.'))
        except OSError:
            return []

    def review_count(self) -> int:
        return len(self.review_files())


def _same_file(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False
