# ================================================================
# File     : tenant_runner.py
# Purpose  : Run the PIM posture audit across every tenant
# Notes    : Sequential or bounded thread pool. A tenant that blows
#            up contributes nothing; its siblings carry on. Results
#            are merged only after every tenant has finished.
# ================================================================

import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.config import fncGetTenantCredentials
from core.errors import TenantError
from core.models import AssignmentRecord
from core.utils import fncPrintMessage


@dataclass
class TenantResult:
    name: str
    ok: bool
    records: List[AssignmentRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    seconds: float = 0.0


@dataclass
class RunResult:
    tenants: List[TenantResult]

    @property
    def records(self) -> List[AssignmentRecord]:
        out: List[AssignmentRecord] = []
        for t in self.tenants:
            out.extend(t.records)
        return out

    @property
    def succeeded(self) -> int:
        return sum(1 for t in self.tenants if t.ok)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tenants if not t.ok)

    @property
    def warning_count(self) -> int:
        return sum(len(t.warnings) for t in self.tenants)


def _default_client_factory(creds: Dict[str, str]):
    from handlers.graph.client import GraphClient
    return GraphClient(**creds)


def _default_audit(client, args):
    from modules.entra import pim_posture
    return pim_posture.run(client, args)


# ================================================================
# Function: fncRunTenant
# Purpose : Authenticate + audit one tenant, never raising
# Notes   : TenantError is expected (auth/feed); anything else is
#           reported the same way with a traceback in debug
# ================================================================
def fncRunTenant(tenant: Dict[str, Any], cfg: dict, args,
                 client_factory: Optional[Callable] = None,
                 audit: Optional[Callable] = None) -> TenantResult:
    name = tenant["name"]
    client_factory = client_factory or _default_client_factory
    audit = audit or _default_audit
    started = time.monotonic()

    try:
        client = client_factory(fncGetTenantCredentials(cfg, tenant))
        data = audit(client, args)
    except TenantError as ex:
        fncPrintMessage(f"Tenant {name} skipped: {ex}", "error")
        return TenantResult(name=name, ok=False, error=str(ex), seconds=time.monotonic() - started)
    except Exception as ex:
        fncPrintMessage(f"Tenant {name} raised an unexpected exception: {ex}", "error")
        fncPrintMessage(traceback.format_exc(), "debug")
        return TenantResult(name=name, ok=False, error=f"{type(ex).__name__}: {ex}",
                            seconds=time.monotonic() - started)

    return TenantResult(
        name=name,
        ok=True,
        records=list(data.get("records") or []),
        warnings=list(data.get("warnings") or []),
        summary=dict(data.get("summary") or {}),
        seconds=time.monotonic() - started,
    )


# ================================================================
# Function: fncRunAllTenants
# Purpose : Audit every tenant, optionally in parallel
# Notes   : Output order follows the configured tenant order,
#           whatever order the workers finish in
# ================================================================
def fncRunAllTenants(tenants: List[Dict[str, Any]], cfg: dict, args,
                     client_factory: Optional[Callable] = None,
                     audit: Optional[Callable] = None) -> RunResult:
    threads = max(1, int(cfg.get("parallel") or 1))
    fncPrintMessage(f"Auditing {len(tenants)} tenant(s) (parallel={threads})", "info")

    by_name: Dict[str, TenantResult] = {}
    if threads <= 1:
        for t in tenants:
            by_name[t["name"]] = fncRunTenant(t, cfg, args, client_factory, audit)
    else:
        with ThreadPoolExecutor(max_workers=threads) as executor:
            futures = {executor.submit(fncRunTenant, t, cfg, args, client_factory, audit): t["name"] for t in tenants}
            for future in as_completed(futures):
                by_name[futures[future]] = future.result()

    result = RunResult(tenants=[by_name[t["name"]] for t in tenants])
    level = "success" if not result.failed else "warn"
    fncPrintMessage(f"Tenants complete: {result.succeeded} succeeded, {result.failed} failed.", level)
    return result
