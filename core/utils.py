# ================================================================
# File     : utils.py
# Purpose  : Common helpers for PIMPoodle (console, files, time, data)
# Notes    : British English; witty output; thread-safe printing
# ================================================================

import os
import json
import csv
import time
import uuid
import random
import pathlib
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from colorama import Fore, Style, init as _colorama_init
from tabulate import tabulate

_colorama_init(autoreset=True)

DEBUG_ENABLED = False
_PRINT_LOCK = threading.Lock()

# Capture stamps double as snapshot/report folder names
STAMP_FORMAT = "%Y%m%d-%H%M%S"


# ================================================================
# Function: fncSetDebug
# Purpose : Globally enable/disable debug output
# Notes   : Called from main after parsing --debug
# ================================================================
def fncSetDebug(enabled: bool) -> None:
    global DEBUG_ENABLED
    DEBUG_ENABLED = bool(enabled)


# ================================================================
# Function: fncPrintMessage
# Purpose : Standardised console output with levels and colours
# Notes   : Levels: info, warn, error, success, debug. Tenant workers
#           print concurrently, so lines are written under a lock.
# ================================================================
def fncPrintMessage(message: str, level: str = "info") -> None:
    if level == "debug" and not DEBUG_ENABLED:
        return
    colours = {
        "info": Fore.CYAN,
        "warn": Fore.YELLOW,
        "error": Fore.RED,
        "success": Fore.GREEN,
        "debug": Fore.MAGENTA
    }
    prefix = {
        "info": "[•]",
        "warn": "[!]",
        "error": "[✗]",
        "success": "[✓]",
        "debug": "[∆]"
    }
    colour = colours.get(level, "")
    mark = prefix.get(level, "[ ]")
    with _PRINT_LOCK:
        print(f"{colour}{mark} {message}{Style.RESET_ALL}")


# ================================================================
# Function: fncDisplayBanner
# Purpose : Display the PIMPoodle banner
# Notes   : Alternating colours per character, poodle on the right
# ================================================================
def fncDisplayBanner(version: str = "v1.0"):
    banner_lines = [
        " ___ ___ __  __   ___             _ _     ",
        "| _ \\_ _|  \\/  | | _ \\___  ___  __| | |___ ",
        "|  _/| || |\\/| | |  _/ _ \\/ _ \\/ _` | / -_)",
        "|_| |___|_|  |_| |_| \\___/\\___/\\__,_|_\\___|",
    ]
    poodle_lines = [
        "  /)---(\\ ",
        " (/ . . \\)",
        "  \\(*)/   ",
        " (___/-(____)",
    ]
    colours = [Fore.RED, Fore.YELLOW, Fore.GREEN, Fore.BLUE]

    def rainbow(text: str) -> str:
        out = ""
        for i, ch in enumerate(text):
            out += colours[i % len(colours)] + ch
        return out + Style.RESET_ALL

    width = max(len(line) for line in banner_lines) + 4
    print("\n")
    for i, line in enumerate(banner_lines):
        tail = poodle_lines[i] if i < len(poodle_lines) else ""
        print(rainbow(line.ljust(width) + tail))
    print(f"{Fore.CYAN}\nPIMPoodle {version} — 'Sniffing out standing admin since breakfast.'{Style.RESET_ALL}\n")


# ================================================================
# Function: fncBlurb
# Purpose : Display a witty blurb describing current action
# Notes   : Random line per phase unless a flavour is given
# ================================================================
def fncBlurb(action: str, flavour: str = None):
    blurbs = {
        "audit": [
            "Sniffing every tenant for standing admin…",
            "Counting who can be Global Admin before lunch…",
            "Following the PIM scent trail across tenants…",
        ],
        "diff": [
            "Comparing today's biscuits with yesterday's…",
            "Digging up the last snapshot…",
        ],
        "generic": [
            "Preparing the harness…",
            "Warming up the sniffer…",
        ],
    }
    flavour_text = flavour or random.choice(blurbs.get(action, blurbs["generic"]))
    fncPrintMessage(flavour_text, "info")


# ================================================================
# Function: fncEnsureFolder
# Purpose : Create a folder if it does not exist
# Notes   : Returns pathlib.Path object
# ================================================================
def fncEnsureFolder(path) -> pathlib.Path:
    p = pathlib.Path(path).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


# ================================================================
# Function: fncLoadEnv
# Purpose : Read environment variable with default
# Notes   : Strips quotes; returns default if unset
# ================================================================
def fncLoadEnv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name, default)
    if isinstance(val, str):
        return val.strip().strip('"').strip("'")
    return val


# ================================================================
# Function: fncReadJSON
# Purpose : Load JSON from file
# Notes   : Returns {} on failure when safe=True
# ================================================================
def fncReadJSON(path: str, safe: bool = True) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as ex:
        if safe:
            fncPrintMessage(f"Could not read JSON '{path}': {ex}", "warn")
            return {}
        raise


# ================================================================
# Function: fncWriteJSON
# Purpose : Write data to JSON with nice formatting
# Notes   : Ensures parent folder exists; UTF-8; 2-space indent
# ================================================================
def fncWriteJSON(path: str, data: Any) -> None:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    fncPrintMessage(f"Saved JSON → {p}", "success")


# ================================================================
# Function: fncExportCSV
# Purpose : Save list[dict] to CSV
# Notes   : Column order from `headers`, else union of keys (sorted)
# ================================================================
def fncExportCSV(path: str, rows: Iterable[Dict[str, Any]], headers: Optional[List[str]] = None) -> None:
    rows = list(rows)
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    hdrs = headers or sorted({k for r in rows for k in r.keys()})
    with open(p, "w", newline="", encoding="utf-8") as f:
        if hdrs:
            w = csv.DictWriter(f, fieldnames=hdrs, extrasaction="ignore")
            w.writeheader()
            for r in rows:
                w.writerow({k: ("" if r.get(k) is None else r.get(k)) for k in hdrs})

    if not rows:
        fncPrintMessage(f"Created empty CSV → {p}", "warn")
        return
    fncPrintMessage(f"Saved CSV → {p}", "success")


# ================================================================
# Function: fncUtcNow / fncCaptureStamp / fncParseStamp
# Purpose : Run clock and the folder-safe capture stamp
# ================================================================
def fncUtcNow() -> datetime:
    return datetime.now(timezone.utc)


def fncCaptureStamp(when: Optional[datetime] = None) -> str:
    return (when or fncUtcNow()).astimezone(timezone.utc).strftime(STAMP_FORMAT)


def fncParseStamp(stamp: str) -> Optional[datetime]:
    try:
        return datetime.strptime(stamp, STAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


# ================================================================
# Function: fncRetry
# Purpose : Simple retry wrapper with backoff
# Notes   : Only `exceptions` are retried; anything else bubbles
# ================================================================
def fncRetry(fn, attempts: int = 3, backoff: float = 1.5, exceptions: Tuple = (Exception,)):
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except exceptions as ex:
            if attempt >= attempts:
                fncPrintMessage(f"All {attempts} attempts failed: {ex}", "error")
                raise
            sleep_for = backoff ** (attempt - 1)
            fncPrintMessage(f"Attempt {attempt}/{attempts} failed: {ex}. Retrying in {sleep_for:.1f}s…", "warn")
            time.sleep(sleep_for)


# ================================================================
# Function: fncToTable
# Purpose : Render rows as a table string
# Notes   : list[dict]; keys become headers unless given
# ================================================================
def fncToTable(rows: Iterable[Dict[str, Any]], headers: Optional[List[str]] = None, max_rows: Optional[int] = None) -> str:
    rows = list(rows)
    if not rows:
        return "(no data)"
    extra = 0
    if max_rows and len(rows) > max_rows:
        extra = len(rows) - max_rows
        rows = rows[:max_rows]

    hdrs = headers or sorted({k for r in rows for k in r.keys()})
    table_rows = [[r.get(h, "") for h in hdrs] for r in rows]
    out = tabulate(table_rows, headers=hdrs, tablefmt="github")
    if extra:
        out += f"\n… and {extra} more"
    return out


# ================================================================
# Function: fncMask
# Purpose : Mask sensitive strings (client secrets, tokens)
# Notes   : Keeps start/end visible; handles short strings
# ================================================================
def fncMask(value: Optional[str], show: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return f"{value[:show]}{'*' * (len(value) - (show*2))}{value[-show:]}"


# ================================================================
# Function: fncNewRunId
# Purpose : Generate a short unique run identifier
# Notes   : Used to correlate console lines and exported files
# ================================================================
def fncNewRunId(prefix: str = "run") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
