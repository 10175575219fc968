import logging
import threading
import time
from pathlib import Path
from typing import List, Optional
from clipmerge.domain.events import FilesCleanedUp
from clipmerge.domain.models import FileRole
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.session_registry import PART_SUFFIX, SessionRegistry, parse_file_name, validate_session_id

SESSION_TEMP_ROLES = {FileRole.VIDEO, FileRole.NORMALIZED, FileRole.MANIFEST}


class HousekeepingService:
    """Service for removing session inputs, intermediates and expired files.

    Deletions are best-effort: files that are already gone or cannot be
    removed are skipped.
    """

    def __init__(self, registry: SessionRegistry, ttl_s: float = 2 * 60 * 60, event_bus: Optional[EventBus] = None):
        self.registry = registry
        self.ttl_s = ttl_s
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            self.registry.forget(path)
            return False
        except OSError as exc:
            self.logger.warning(f"CLEANUP_FAILED: {path.name} ({exc})")
            return False
        self.registry.forget(path)
        return True

    def _publish(self, removed: int, session_id: Optional[str] = None):
        if removed and self.event_bus is not None:
            self.event_bus.publish(FilesCleanedUp(session_id=session_id, removed=removed))

    def cleanup_session(self, session_id: str) -> int:
        """Removes the session's uploaded clips, normalized temporaries and manifests.

        Completed outputs are never touched. Safe to call repeatedly.
        """
        validate_session_id(session_id)
        targets = set(self.registry.files(session_id, SESSION_TEMP_ROLES))
        # Files left by a previous process are not in the registry yet
        for entry in self.registry.videos_dir.glob(f"*_{session_id}_*"):
            parsed = parse_file_name(entry.name)
            if parsed and parsed[1] == session_id and parsed[0] in SESSION_TEMP_ROLES:
                targets.add(entry)

        removed = 0
        for path in sorted(targets):
            if self._unlink(path):
                removed += 1
                self.logger.info(f"CLEANUP: session={session_id} removed {path.name}")
        self._publish(removed, session_id)
        return removed

    def remove_previous_outputs(self, session_id: str, keep: Path) -> int:
        """Deletes older outputs of a session, keeping only `keep`."""
        validate_session_id(session_id)
        keep = Path(keep)
        candidates = set(self.registry.outputs(session_id))
        for entry in self.registry.videos_dir.glob(f"{FileRole.OUTPUT.value}_{session_id}_*"):
            parsed = parse_file_name(entry.name)
            if parsed and parsed[1] == session_id:
                candidates.add(entry)

        removed = 0
        for path in sorted(candidates):
            if path == keep:
                continue
            if self._unlink(path):
                removed += 1
                self.logger.info(f"CLEANUP: session={session_id} removed old output {path.name}")
        return removed

    def cleanup_expired(self, now: Optional[float] = None) -> List[Path]:
        """Removes non-output files older than the TTL.

        Files belonging to a session with a merge in flight are skipped even
        when old, so a long merge never loses its inputs. The merge check is
        made per file under the registry lock, so a merge that begins during
        the pass is honoured too.
        """
        now = time.time() if now is None else now
        removed: List[Path] = []

        for entry in sorted(self.registry.videos_dir.iterdir()):
            if not entry.is_file():
                continue
            if entry.name.startswith(f"{FileRole.OUTPUT.value}_"):
                continue
            try:
                age = now - entry.stat().st_mtime
            except OSError:
                continue
            if age <= self.ttl_s:
                continue
            parsed = parse_file_name(entry.name.removesuffix(PART_SUFFIX))
            session_id = parsed[1] if parsed else None
            try:
                if not self.registry.unlink_if_idle(entry, session_id):
                    continue
            except FileNotFoundError:
                self.registry.forget(entry)
                continue
            except OSError as exc:
                self.logger.warning(f"CLEANUP_FAILED: {entry.name} ({exc})")
                continue
            removed.append(entry)
            self.logger.info(f"CLEANUP: expired {entry.name} (age={age / 60:.0f}min)")

        self._publish(len(removed))
        return removed


class CleanupScheduler:
    """Runs `cleanup_expired` on a daemon thread at a fixed interval.

    `start()` performs one pass immediately; `stop()` wakes the thread and
    waits for it to exit.
    """

    def __init__(self, housekeeper: HousekeepingService, interval_s: float = 30 * 60):
        self.housekeeper = housekeeper
        self.interval_s = interval_s
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(__name__)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="clipmerge-cleanup", daemon=True)
        self._thread.start()
        self.logger.info(f"CLEANUP_SCHEDULER: started (interval={self.interval_s:g}s, ttl={self.housekeeper.ttl_s:g}s)")

    def stop(self, timeout: float = 5.0):
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self.logger.info("CLEANUP_SCHEDULER: stopped")

    def run_once(self) -> List[Path]:
        try:
            return self.housekeeper.cleanup_expired()
        except OSError as exc:
            # Videos dir may be briefly unavailable (remount); next tick retries
            self.logger.error(f"CLEANUP_SCHEDULER: pass failed ({exc})")
            return []

    def _loop(self):
        while True:
            self.run_once()
            if self._stop_event.wait(self.interval_s):
                break
