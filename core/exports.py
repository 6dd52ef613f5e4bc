# ================================================================
# File     : exports.py
# Purpose  : Write the run's assignment and change sets to disk
# Notes    : CSV and JSON only; called by PIMPoodle.py after diffing
# ================================================================

import pathlib
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from core.errors import RunFatalError
from core.models import AssignmentRecord, ChangeRecord
from core.utils import fncPrintMessage, fncEnsureFolder, fncExportCSV, fncWriteJSON, fncCaptureStamp

SUPPORTED_FORMATS = {"csv", "json"}

ASSIGNMENT_COLUMNS = [
    "tenant", "principalName", "principalType", "loginName", "email", "enabled",
    "roleName", "assignmentType", "isPIMManaged", "viaGroup", "isGroupMember",
    "scope", "status", "startTime", "endTime", "assignedAt",
    "department", "jobTitle", "companyName", "principalCreated",
    "principalId", "roleId", "assignmentId", "sourceAssignmentId",
]

CHANGE_COLUMNS = [
    "changeType", "tenant", "principalName", "principalType", "loginName", "roleName",
    "attribute", "previousValue", "currentValue", "description", "timestamp", "diffKey", "principalId",
]


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# Notes    : "csv,json" and "csv json" both work; unknowns warned
# ================================================================
def fncExportList(args_export) -> set:
    if not args_export:
        return set()
    chunks = args_export if isinstance(args_export, (list, tuple)) else [args_export]
    out = set()
    for chunk in chunks:
        for part in str(chunk).replace(",", " ").split():
            fmt = part.strip().lower()
            if fmt in SUPPORTED_FORMATS:
                out.add(fmt)
            else:
                fncPrintMessage(f"Ignoring unsupported export format: {fmt}", "warn")
    return out


# ================================================================
# Function: fncGetExportPath
# Purpose  : Build <reports_dir>/<capture stamp>/ for this run
# Notes    : Failure to create it is run-fatal
# ================================================================
def fncGetExportPath(root, captured_at: Optional[datetime] = None) -> pathlib.Path:
    out_dir = pathlib.Path(root).expanduser() / fncCaptureStamp(captured_at)
    try:
        return fncEnsureFolder(out_dir)
    except OSError as ex:
        raise RunFatalError(f"Cannot create export folder {out_dir}", cause=ex) from ex


# ================================================================
# Function: fncExportRun
# Purpose  : Write assignments + changes in every requested format
# ================================================================
def fncExportRun(out_dir: pathlib.Path, records: Iterable[AssignmentRecord],
                 changes: Iterable[ChangeRecord], formats: set,
                 run_summary: Optional[Dict] = None) -> List[pathlib.Path]:
    rows = [r.to_dict() for r in records]
    change_rows = [c.to_dict() for c in changes]
    written: List[pathlib.Path] = []

    if "csv" in formats:
        fncExportCSV(str(out_dir / "assignments.csv"), rows, headers=ASSIGNMENT_COLUMNS)
        fncExportCSV(str(out_dir / "changes.csv"), change_rows, headers=CHANGE_COLUMNS)
        written += [out_dir / "assignments.csv", out_dir / "changes.csv"]

    if "json" in formats:
        fncWriteJSON(str(out_dir / "pim_posture.json"), {
            "summary": run_summary or {},
            "assignments": rows,
            "changes": change_rows,
        })
        written.append(out_dir / "pim_posture.json")

    if written:
        fncPrintMessage(f"Exports written → {out_dir}", "success")
    return written
