#!/usr/bin/env python3
# ================================================================
# Tool     : PIMPoodle
# Purpose  : Multi-tenant Entra privileged-access posture audit
# Notes    : "Sniffing out standing admin since breakfast." 🐩
# ================================================================

import sys
import argparse
from types import SimpleNamespace

from core.config import fncInitConfig, fncApplyCliOverrides, fncIsDebug, fncGetTenants
from core.diff import SnapshotDiffer, fncSummariseChanges
from core.errors import RunFatalError, SnapshotError
from core.exports import fncExportList, fncGetExportPath, fncExportRun
from core.snapshots import JsonSnapshotStore
from core.tenant_runner import fncRunAllTenants
from core.utils import (
    fncPrintMessage,
    fncSetDebug,
    fncDisplayBanner,
    fncBlurb,
    fncEnsureFolder,
    fncToTable,
    fncUtcNow,
)

VERSION = "v1.0"
EXIT_OK = 0
EXIT_RUN_FATAL = 1
EXIT_ALL_TENANTS_FAILED = 2


# ================================================================
# Function: fncParseArguments
# Purpose  : Define and parse command-line arguments for PIMPoodle
# ================================================================
def fncParseArguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="PIMPoodle",
        description="PIMPoodle 🐩 — who holds privileged roles, and for how long"
    )
    parser.add_argument("--config", help="Path to config.json (default: ~/.pimpoodle/config.json)")
    parser.add_argument("--tenant", help="Comma-separated tenant names to audit (default: all)", default="")
    parser.add_argument("--parallel", type=int, default=None,
                        help="Number of tenants to audit concurrently (default from config)")
    parser.add_argument("--export", nargs="*", metavar="FMT[,FMT...]", default=None,
                        help="Export formats: csv, json. Example: --export csv,json")
    parser.add_argument("--snapshot-dir", help="Override snapshot folder")
    parser.add_argument("--reports-dir", help="Override reports folder")
    parser.add_argument("--no-snapshot", action="store_true", help="Do not save this run as a snapshot")
    parser.add_argument("--require-baseline", action="store_true",
                        help="Fail the run when no prior snapshot can be loaded")
    parser.add_argument("--suppress-pim-churn", action="store_true",
                        help="Do not report Eligible↔Active flips as changes")
    parser.add_argument("--no-preview", action="store_true", help="Skip per-tenant console tables")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output")
    return parser.parse_args(argv)


def _load_baseline(store: JsonSnapshotStore, now, required: bool):
    fncBlurb("diff")
    previous = store.load_latest_prior(now)
    if previous is None:
        if required:
            raise RunFatalError(f"No usable baseline snapshot in {store.root} and one is required")
        fncPrintMessage("No prior snapshot found — this run becomes the baseline.", "warn")
    return previous


def _print_run_summary(result, changes) -> None:
    rows = [{
        "tenant": t.name,
        "status": "ok" if t.ok else "FAILED",
        "assignments": len(t.records),
        "permanent": t.summary.get("Permanent", 0),
        "warnings": len(t.warnings),
        "seconds": f"{t.seconds:.1f}",
        "error": t.error or "",
    } for t in result.tenants]
    print(fncToTable(rows, headers=["tenant", "status", "assignments", "permanent", "warnings", "seconds", "error"]))

    counts = fncSummariseChanges(changes)
    fncPrintMessage(
        f"Changes: {counts['New']} new, {counts['Removed']} removed, {counts['Modified']} modified", "info")
    if changes:
        print(fncToTable([c.to_dict() for c in changes],
                         headers=["changeType", "tenant", "principalName", "roleName", "previousValue", "currentValue"],
                         max_rows=30))


# ================================================================
# Function: fncRunAudit
# Purpose  : One full audit run: tenants → diff → snapshot → exports
# Notes    : Raises RunFatalError; returns the process exit code
# ================================================================
def fncRunAudit(args, cfg: dict, client_factory=None, audit=None) -> int:
    tenants = fncGetTenants(cfg, [n.strip() for n in (args.tenant or "").split(",") if n.strip()])
    now = fncUtcNow()

    # Output locations first: failing here must not cost a full audit
    try:
        fncEnsureFolder(cfg["snapshot_dir"])
    except OSError as ex:
        raise RunFatalError(f"Cannot create snapshot folder {cfg['snapshot_dir']}", cause=ex) from ex
    formats = fncExportList(args.export)
    out_dir = fncGetExportPath(cfg["reports_dir"], now) if formats else None

    store = JsonSnapshotStore(cfg["snapshot_dir"])
    previous = _load_baseline(store, now, bool(cfg.get("require_baseline")))

    fncBlurb("audit")
    module_args = SimpleNamespace(
        now=now,
        permanent_threshold_days=int(cfg.get("permanent_threshold_days") or 365),
        preview=not getattr(args, "no_preview", False),
    )
    result = fncRunAllTenants(tenants, cfg, module_args, client_factory=client_factory, audit=audit)
    records = result.records

    # Failed tenants keep their last known records: out of the diff, into the snapshot
    failed = {t.name for t in result.tenants if not t.ok}
    carried = []
    if previous is not None and failed:
        fncPrintMessage(f"Excluding failed tenant(s) from change detection: {', '.join(sorted(failed))}", "warn")
        carried = [r for r in previous if r.tenant in failed]
        previous = [r for r in previous if r.tenant not in failed]

    differ = SnapshotDiffer(suppress_pim_churn=bool(cfg.get("suppress_pim_churn")), timestamp=now.isoformat())
    changes = differ.diff(records, previous)

    if not getattr(args, "no_snapshot", False):
        try:
            path = store.save_snapshot(now, records + carried, tenants=[t.name for t in result.tenants if t.ok])
            fncPrintMessage(f"Snapshot saved → {path}", "success")
        except SnapshotError as ex:
            raise RunFatalError("Could not persist this run's snapshot", cause=ex) from ex

    if out_dir is not None:
        fncExportRun(out_dir, records, changes, formats, run_summary={
            "capturedAt": now.isoformat(),
            "tenantsSucceeded": result.succeeded,
            "tenantsFailed": result.failed,
            "assignments": len(records),
            "changes": fncSummariseChanges(changes),
            "failures": {t.name: t.error for t in result.tenants if not t.ok},
        })

    _print_run_summary(result, changes)
    fncPrintMessage(
        f"Run complete: {len(records)} assignment(s), {len(changes)} change(s), "
        f"{result.succeeded}/{len(result.tenants)} tenant(s) ok, {result.warning_count} warning(s).",
        "success" if not result.failed else "warn")

    if result.tenants and result.succeeded == 0:
        return EXIT_ALL_TENANTS_FAILED
    return EXIT_OK


# ================================================================
# Function: main
# Purpose  : Main entry point for PIMPoodle execution
# ================================================================
def main(argv=None) -> int:
    args = fncParseArguments(argv)
    fncSetDebug(args.debug)

    try:
        cfg = fncInitConfig(args.config)
        cfg = fncApplyCliOverrides(cfg, args)
        fncSetDebug(fncIsDebug(cfg))

        fncDisplayBanner(VERSION)
        if fncIsDebug(cfg):
            fncPrintMessage("Debug output enabled.", "debug")
        if int(cfg.get("parallel") or 1) > 4:
            fncPrintMessage("Warning: parallel > 4 may hit Microsoft Graph throttling.", "warn")

        return fncRunAudit(args, cfg)
    except RunFatalError as ex:
        fncPrintMessage(f"Run aborted: {ex}", "error")
        return EXIT_RUN_FATAL


if __name__ == "__main__":
    sys.exit(main())
