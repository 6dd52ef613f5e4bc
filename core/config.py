# ================================================================
# File     : config.py
# Purpose  : Configuration management for PIMPoodle
# Notes    : Handles initial creation, loading, tenant credentials
#            and CLI overrides. Problems here are run-fatal.
# ================================================================

import pathlib
from typing import Any, Dict, List, Optional

from core.errors import ConfigError
from core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv, fncMask

POODLE_HOME = pathlib.Path.home() / ".pimpoodle"


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Written to disk the first time PIMPoodle runs
# ================================================================
def fncDefaultConfig() -> dict:
    return {
        "version": "1.0",
        "pimpoodle_home": str(POODLE_HOME),
        "reports_dir": str(POODLE_HOME / "reports"),
        "snapshot_dir": str(POODLE_HOME / "snapshots"),
        "debug": False,
        "parallel": 1,
        "permanent_threshold_days": 365,
        "suppress_pim_churn": False,
        "require_baseline": False,
        "graph": {
            "authority": "https://login.microsoftonline.com",
            "client_id": "",
            "client_secret": ""
        },
        "tenants": [
            {
                "name": "example",
                "tenant_id": "",
                "client_id": "",
                "client_secret": ""
            }
        ]
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or POODLE_HOME / "config.json").expanduser()

    try:
        fncEnsureFolder(path.parent)
    except OSError as ex:
        raise ConfigError(f"Cannot create config folder {path.parent}", cause=ex) from ex

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        try:
            fncWriteJSON(str(path), fncDefaultConfig())
        except OSError as ex:
            raise ConfigError(f"Cannot write default config {path}", cause=ex) from ex
    return fncLoadConfig(str(path))


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# Notes   : PIMPOODLE_CLIENT_ID / PIMPOODLE_CLIENT_SECRET feed the
#           shared app registration used by every tenant
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    try:
        raw = fncReadJSON(config_path, safe=False)
    except (OSError, ValueError) as ex:
        raise ConfigError(f"Could not read config {config_path}", cause=ex) from ex
    if not isinstance(raw, dict):
        raise ConfigError(f"Config {config_path} must be a JSON object")

    # Missing keys fall back to defaults so older files keep working
    cfg = fncDefaultConfig()
    cfg.update({k: v for k, v in raw.items() if k != "graph"})
    cfg["graph"].update(raw.get("graph") or {})

    cfg["graph"]["client_id"] = fncLoadEnv("PIMPOODLE_CLIENT_ID", cfg["graph"].get("client_id"))
    cfg["graph"]["client_secret"] = fncLoadEnv("PIMPOODLE_CLIENT_SECRET", cfg["graph"].get("client_secret"))

    if not isinstance(cfg.get("tenants"), list):
        raise ConfigError("'tenants' must be a list of tenant objects")

    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return cfg


# ================================================================
# Function: fncGetTenants
# Purpose : Return the tenant blocks to audit, optionally filtered
# Notes   : Names are matched case-insensitively; unknown names and
#           nameless/duplicate entries are config errors
# ================================================================
def fncGetTenants(cfg: dict, only: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    tenants = []
    seen = set()
    for t in cfg.get("tenants") or []:
        if not isinstance(t, dict) or not t.get("name"):
            raise ConfigError("Every tenant needs at least a 'name'")
        key = t["name"].lower()
        if key in seen:
            raise ConfigError(f"Duplicate tenant name: {t['name']}")
        seen.add(key)
        tenants.append(t)

    if only:
        wanted = {n.lower() for n in only}
        unknown = wanted - seen
        if unknown:
            raise ConfigError(f"Unknown tenant(s): {', '.join(sorted(unknown))}")
        tenants = [t for t in tenants if t["name"].lower() in wanted]

    if not tenants:
        raise ConfigError("No tenants configured, add at least one under 'tenants'")
    return tenants


# ================================================================
# Function: fncGetTenantCredentials
# Purpose : Merge per-tenant creds with the shared app registration
# Notes   : PIMPOODLE_SECRET_<NAME> overrides a tenant's secret
# ================================================================
def fncGetTenantCredentials(cfg: dict, tenant: Dict[str, Any]) -> Dict[str, str]:
    graph = cfg.get("graph", {})
    env_name = "PIMPOODLE_SECRET_" + "".join(c if c.isalnum() else "_" for c in tenant["name"]).upper()
    creds = {
        "tenant_name": tenant["name"],
        "tenant_id": tenant.get("tenant_id") or "",
        "client_id": tenant.get("client_id") or graph.get("client_id") or "",
        "client_secret": fncLoadEnv(env_name, tenant.get("client_secret") or graph.get("client_secret") or ""),
        "authority": graph.get("authority") or "https://login.microsoftonline.com",
    }
    fncPrintMessage(
        f"[{tenant['name']}] tenant={creds['tenant_id'] or '-'} client={creds['client_id'] or '-'} "
        f"secret={fncMask(creds['client_secret']) or '-'}", "debug")
    return creds


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# Notes   : Only flags the user actually passed win over the file
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", False):
        cfg["debug"] = True
    if getattr(args, "parallel", None):
        cfg["parallel"] = int(args.parallel)
    if getattr(args, "require_baseline", False):
        cfg["require_baseline"] = True
    if getattr(args, "suppress_pim_churn", False):
        cfg["suppress_pim_churn"] = True
    if getattr(args, "snapshot_dir", None):
        cfg["snapshot_dir"] = args.snapshot_dir
    if getattr(args, "reports_dir", None):
        cfg["reports_dir"] = args.reports_dir
    return cfg


# ================================================================
# Function: fncIsDebug
# Purpose : Return whether debug mode is enabled in config
# ================================================================
def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))
