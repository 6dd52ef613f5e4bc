# ================================================================
# File     : snapshots.py
# Purpose  : JSON file store for per-run assignment snapshots
# Notes    : One file per capture: assignments_YYYYMMDD-HHMMSS.json
#            "Prior" means strictly older than the asking run.
# ================================================================

import pathlib
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from core.errors import SnapshotError
from core.models import AssignmentRecord
from core.utils import fncCaptureStamp, fncEnsureFolder, fncParseStamp, fncPrintMessage, fncReadJSON, fncWriteJSON

_SNAPSHOT_NAME = re.compile(r"^assignments_(\d{8}-\d{6})\.json$")


class JsonSnapshotStore:
    def __init__(self, root):
        self.root = pathlib.Path(root).expanduser()

    def _path_for(self, captured_at: datetime) -> pathlib.Path:
        return self.root / f"assignments_{fncCaptureStamp(captured_at)}.json"

    def list_captures(self) -> List[Tuple[datetime, pathlib.Path]]:
        """All snapshot files, newest first."""
        if not self.root.is_dir():
            return []
        out = []
        for p in self.root.iterdir():
            m = _SNAPSHOT_NAME.match(p.name)
            if not m or not p.is_file():
                continue
            when = fncParseStamp(m.group(1))
            if when:
                out.append((when, p))
        out.sort(key=lambda t: t[0], reverse=True)
        return out

    def _read(self, path: pathlib.Path) -> List[AssignmentRecord]:
        try:
            data = fncReadJSON(str(path), safe=False)
            return [AssignmentRecord.from_dict(r) for r in data.get("records", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as ex:
            raise SnapshotError(f"Unreadable snapshot {path.name}", cause=ex) from ex

    def load_latest_prior(self, before: datetime) -> Optional[List[AssignmentRecord]]:
        """
        Records of the newest capture strictly older than `before`.
        Unreadable files are skipped in favour of the next older one.
        Returns None when no usable baseline exists.
        """
        cutoff = fncParseStamp(fncCaptureStamp(before))
        for when, path in self.list_captures():
            if when >= cutoff:
                continue
            try:
                records = self._read(path)
            except SnapshotError as ex:
                fncPrintMessage(f"{ex}; trying an older snapshot.", "warn")
                continue
            fncPrintMessage(f"Baseline snapshot: {path.name} ({len(records)} records)", "info")
            return records
        return None

    def save_snapshot(self, captured_at: datetime, records: Iterable[AssignmentRecord],
                      tenants: Optional[List[str]] = None) -> pathlib.Path:
        records = list(records)
        path = self._path_for(captured_at)
        try:
            fncEnsureFolder(self.root)
            fncWriteJSON(str(path), {
                "capturedAt": captured_at.isoformat(),
                "tenants": tenants if tenants is not None else sorted({r.tenant for r in records}),
                "count": len(records),
                "records": [r.to_dict() for r in records],
            })
        except OSError as ex:
            raise SnapshotError(f"Could not write snapshot {path}", cause=ex) from ex
        return path
