"""Explicit registry of the files each upload session owns.

Every file the service writes into the videos directory is named
`<role>_<session>_...` and recorded here under its session, so session cleanup
and expiry work from a known file set instead of prefix matching alone. The
registry can be rebuilt from the directory listing after a restart.
"""

import os
import re
import shutil
import threading
import time
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Set, Union
from clipmerge.domain.errors import MergeInProgress
from clipmerge.domain.models import FileRole

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,64}$")
FILE_NAME_RE = re.compile(
    r"^(?P<role>video|norm|filelist|output)_(?P<session>[A-Za-z0-9-]{1,64})_(?:\d+_)?(?P<ts>\d+)(?:\.[^.]+)?$"
)
PART_SUFFIX = ".part"


def validate_session_id(session_id: Optional[str]) -> str:
    if not session_id or not SESSION_ID_RE.match(session_id):
        raise ValueError(
            "sessionId must be 1-64 characters of letters, digits or '-'"
        )
    return session_id


def parse_file_name(name: str) -> Optional[tuple]:
    """Returns (role, session_id, timestamp) for a session-owned file name."""
    match = FILE_NAME_RE.match(name)
    if not match:
        return None
    return FileRole(match.group("role")), match.group("session"), int(match.group("ts"))


@dataclass
class SessionRecord:
    session_id: str
    files: Dict[Path, FileRole] = field(default_factory=dict)
    merging: bool = False


class SessionRegistry:
    """Thread-safe session -> owned files mapping rooted at one videos directory."""

    def __init__(self, videos_dir: Path):
        self.videos_dir = Path(videos_dir)
        self.videos_dir.mkdir(parents=True, exist_ok=True)
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self._last_timestamp = 0
        self.logger = logging.getLogger(__name__)

    def next_timestamp(self) -> int:
        """Millisecond wall-clock timestamp, strictly increasing within the process."""
        with self._lock:
            ts = max(int(time.time() * 1000), self._last_timestamp + 1)
            self._last_timestamp = ts
            return ts

    def path_for(self, role: FileRole, session_id: str, timestamp: int, suffix: str = "", index: Optional[int] = None) -> Path:
        validate_session_id(session_id)
        middle = f"{index}_" if index is not None else ""
        return self.videos_dir / f"{role.value}_{session_id}_{middle}{timestamp}{suffix}"

    def register(self, session_id: str, path: Path, role: FileRole) -> Path:
        validate_session_id(session_id)
        path = Path(path)
        with self._lock:
            record = self._sessions.setdefault(session_id, SessionRecord(session_id))
            record.files[path] = role
        return path

    def _drop(self, path: Path):
        # Caller holds self._lock
        for session_id, record in list(self._sessions.items()):
            if record.files.pop(path, None) is not None and not record.files and not record.merging:
                del self._sessions[session_id]

    def forget(self, path: Path):
        with self._lock:
            self._drop(Path(path))

    def unlink_if_idle(self, path: Path, session_id: Optional[str]) -> bool:
        """Deletes `path` unless `session_id` has a merge in flight.

        The check and the unlink happen under the registry lock, so a merge
        cannot begin in between. Returns False when the file was kept; OSError
        from the unlink propagates.
        """
        path = Path(path)
        with self._lock:
            record = self._sessions.get(session_id) if session_id else None
            if record is not None and record.merging:
                return False
            path.unlink()
            self._drop(path)
        return True

    def put_clip(self, session_id: str, source: Union[bytes, BinaryIO], ext: str) -> Path:
        """Stores one uploaded clip as video_<session>_<ts><ext> and registers it.

        Data is written to a `.part` file first and renamed when complete, so a
        merge never sees a half-written clip. Raises MergeInProgress while the
        session is merging, since the clip could not join that merge.
        """
        validate_session_id(session_id)
        if self.is_merging(session_id):
            raise MergeInProgress(session_id)
        ext = ext if not ext or ext.startswith(".") else f".{ext}"
        path = self.path_for(FileRole.VIDEO, session_id, self.next_timestamp(), ext.lower())
        part_path = path.with_name(path.name + PART_SUFFIX)
        try:
            with open(part_path, "wb") as f:
                if isinstance(source, (bytes, bytearray)):
                    f.write(source)
                else:
                    shutil.copyfileobj(source, f)
            with self._lock:
                record = self._sessions.setdefault(session_id, SessionRecord(session_id))
                if record.merging:
                    raise MergeInProgress(session_id)
                os.replace(part_path, path)
                record.files[path] = FileRole.VIDEO
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        self.logger.info(f"CLIP_STORED: session={session_id} file={path.name}")
        return path

    def files(self, session_id: str, roles: Optional[Set[FileRole]] = None) -> List[Path]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return []
            items = list(record.files.items())
        return sorted(
            (path for path, role in items if roles is None or role in roles),
            key=lambda p: p.name,
        )

    def clips(self, session_id: str) -> List[Path]:
        """Uploaded clips still on disk, in upload order (lexical name order)."""
        return [p for p in self.files(session_id, {FileRole.VIDEO}) if p.exists()]

    def outputs(self, session_id: str) -> List[Path]:
        return [p for p in self.files(session_id, {FileRole.OUTPUT}) if p.exists()]

    def sessions(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def begin_merge(self, session_id: str):
        validate_session_id(session_id)
        with self._lock:
            record = self._sessions.setdefault(session_id, SessionRecord(session_id))
            if record.merging:
                raise MergeInProgress(session_id)
            record.merging = True

    def end_merge(self, session_id: str):
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return
            record.merging = False
            if not record.files:
                del self._sessions[session_id]

    def is_merging(self, session_id: str) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            return bool(record and record.merging)

    def merging_sessions(self) -> Set[str]:
        with self._lock:
            return {sid for sid, record in self._sessions.items() if record.merging}

    def rebuild_from_disk(self) -> int:
        """Registers every session-owned file found in the videos directory."""
        count = 0
        for entry in sorted(self.videos_dir.iterdir()):
            if not entry.is_file():
                continue
            parsed = parse_file_name(entry.name)
            if parsed is None:
                continue
            role, session_id, _ = parsed
            self.register(session_id, entry, role)
            count += 1
        if count:
            self.logger.info(f"REGISTRY_REBUILT: {count} files in {len(self.sessions())} sessions")
        return count
