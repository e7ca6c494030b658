"""
Temporary file lifecycle for call sessions.

Every session owns a TempResourceTracker holding the paths its pipeline
wrote into the shared temporary directory. Cleanup deletes the union of the
tracked paths and any explicitly supplied ones and never raises: a missing
file counts as already cleaned (a sweep or a duplicate cleanup got there
first) and any other failure is logged so the remaining files still go.
"""

import os
import tempfile
import uuid
from typing import Dict, Iterable, Optional

from agi_tts.core.models import Artifact
from agi_tts.errors import CleanupError
from agi_tts.logging_config import get_logger
from agi_tts.metrics import ARTIFACTS_DELETED, CLEANUP_FAILURES

logger = get_logger(__name__)

DEFAULT_TEMP_DIR = os.path.join(tempfile.gettempdir(), "tts-edge-asterisk")


def ensure_temp_dir(path: str = DEFAULT_TEMP_DIR) -> str:
    """Create the shared temporary directory if needed and return it."""
    os.makedirs(path, exist_ok=True)
    return path


def allocate_artifact_path(directory: str, suffix: str) -> str:
    """Return a fresh, collision-free path under ``directory``."""
    if suffix and not suffix.startswith("."):
        suffix = f".{suffix}"
    return os.path.join(directory, f"{uuid.uuid4()}{suffix}")


def strip_extension(path: str) -> str:
    """Asterisk resolves the codec itself, so playback names carry no extension."""
    return os.path.splitext(path)[0]


def remove_path(path: str) -> bool:
    """
    Remove one file.

    Returns True if a file was removed, False if it was already gone.

    Raises:
        CleanupError: any other filesystem failure
    """
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise CleanupError(f"Failed to remove {path}: {e}", path=path) from e


class TempResourceTracker:
    """Set of temporary files created by one session."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        # Insertion-ordered set; values keep the Artifact when one is known
        self._tracked: Dict[str, Optional[Artifact]] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._tracked

    def __len__(self) -> int:
        return len(self._tracked)

    @property
    def paths(self) -> list:
        return list(self._tracked)

    def register(self, path: str, artifact: Optional[Artifact] = None) -> None:
        """Track ``path``; registering the same path twice is a no-op."""
        if path in self._tracked:
            if artifact is not None and self._tracked[path] is None:
                self._tracked[path] = artifact
            return
        self._tracked[path] = artifact
        logger.debug("Temporary file registered", session_id=self.session_id, file_path=path)

    def delete_file(self, path: str) -> bool:
        """Delete one file, absorbing every error. Returns True if a file was removed."""
        return bool(self._delete(path))

    def release_all(self, *extra_paths: Optional[str]) -> int:
        """
        Delete every tracked path plus ``extra_paths`` and forget them all.

        Callers may pass paths that were never registered; ``None`` entries
        are skipped. Artifacts lose their owner only once their file is gone;
        one that could not be removed keeps it. Returns the number of files
        actually removed.
        """
        targets: Dict[str, None] = {}
        for path in self._iter_targets(extra_paths):
            targets[path] = None

        removed = 0
        gone = set()
        try:
            for path in targets:
                outcome = self._delete(path)
                if outcome is None:
                    continue
                gone.add(path)
                if outcome:
                    removed += 1
        finally:
            for path, artifact in self._tracked.items():
                if artifact is not None and path in gone:
                    artifact.owner_session_id = None
            self._tracked.clear()

        logger.debug("Temporary files released",
                     session_id=self.session_id,
                     attempted=len(targets),
                     removed=removed,
                     failed=len(targets) - len(gone))
        return removed

    def _delete(self, path: str) -> Optional[bool]:
        """True if removed, False if already absent, None if the removal failed."""
        try:
            removed = remove_path(path)
        except CleanupError as e:
            CLEANUP_FAILURES.labels(actor="session").inc()
            logger.warning("Error removing temporary file",
                           session_id=self.session_id,
                           file_path=path,
                           error=e.message)
            return None
        if removed:
            ARTIFACTS_DELETED.labels(actor="session").inc()
            logger.debug("Temporary file removed", session_id=self.session_id, file_path=path)
        return removed

    def _iter_targets(self, extra_paths: Iterable[Optional[str]]):
        for path in self._tracked:
            yield path
        for path in extra_paths:
            if path:
                yield path
