# ================================================================
# File     : handlers/graph/graph_helpers.py
# Purpose  : Safer Graph helpers (handle missing $select fields)
# Notes    : Warn instead of fail; add "Not Found" placeholders.
# ================================================================

import re
from typing import List, Dict, Any, Tuple

from core.errors import GraphRequestError
from core.utils import fncPrintMessage

_MISSING_PROP = re.compile(r"Could not find a property named '([^']+)'")


def safe_select_get_all(client, base_endpoint: str, fields: List[str]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Calls client.get_all with a $select list. If Graph answers 400 with
    "Could not find a property named 'X'", warn, drop X, retry, and set
    X = "Not Found" on every returned row.
    Returns: (items, missing_fields)
    """
    sep = "&" if "?" in base_endpoint else "?"
    endpoint = f"{base_endpoint}{sep}$select={','.join(fields)}" if fields else base_endpoint
    try:
        items = client.get_all(endpoint)
        for it in items:
            for f in fields:
                it.setdefault(f, None)
        return items, []
    except GraphRequestError as ex:
        if ex.status != 400:
            raise
        m = _MISSING_PROP.search(ex.details.get("body", ""))
        if not m or m.group(1) not in fields:
            raise

        missing = m.group(1)
        fncPrintMessage(f"Property not found: '{missing}' — retrying without it.", "warn")
        retry_fields = [f for f in fields if f != missing]
        items, more_missing = safe_select_get_all(client, base_endpoint, retry_fields)
        for it in items:
            it[missing] = "Not Found"
        return items, [missing] + more_missing
