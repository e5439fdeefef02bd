from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from intelchat.chat.types import ChatToolOutcome

# Result keys that hold the interesting list for a tool, checked in order.
_LIST_KEYS = ("victims", "ttps", "malware", "actors", "items")


def _truncate(s: str, n: int) -> str:
    txt = (s or "").strip()
    if len(txt) <= n:
        return txt
    return txt[: max(0, n - 3)].rstrip() + "..."


def _jsonable(v: Any, *, _depth: int = 0, _max_depth: int = 6) -> Any:
    """
    Best-effort convert values to JSON-serializable objects.
    """
    if _depth >= _max_depth:
        return str(v)
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, dict):
        return {str(k): _jsonable(vv, _depth=_depth + 1, _max_depth=_max_depth) for k, vv in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_jsonable(x, _depth=_depth + 1, _max_depth=_max_depth) for x in list(v)]
    if hasattr(v, "model_dump"):
        return _jsonable(v.model_dump(mode="json"), _depth=_depth + 1, _max_depth=_max_depth)
    return str(v)


def tool_payload_text(payload: Any) -> str:
    """Serialize a tool payload for a `tool` message."""
    return json.dumps(_jsonable(payload), ensure_ascii=False)


def compact_args_for_log(args: Dict[str, Any], *, max_keys: int = 8, max_value_chars: int = 80) -> Dict[str, Any]:
    if not isinstance(args, dict):
        return {}
    out: Dict[str, Any] = {}
    for i, (k, v) in enumerate(args.items()):
        if i >= max_keys:
            break
        vv = _jsonable(v)
        if isinstance(vv, str):
            vv = _truncate(vv, max_value_chars)
        out[str(k)] = vv
    return out


def summarize_tool_result(*, tool: str, ok: bool, error: Optional[str], result: Any) -> Tuple[ChatToolOutcome, str]:
    """
    Return (outcome, summary) for logs and tool events.
    """
    t = str(tool or "").strip()
    if (not ok) or (error is not None and str(error).strip()):
        return "error", _truncate(f"{t}: error {str(error or '').strip() or 'unknown'}", 160)

    if isinstance(result, list):
        if not result:
            return "empty", f"{t}: empty (0 results)"
        return "ok", f"{t}: ok ({len(result)} results)"

    if isinstance(result, dict):
        if t == "get_ransomware_statistics":
            return "ok", _truncate(
                f"{t}: today={result.get('today')} 7d={result.get('last7Days')} 30d={result.get('last30Days')}", 160
            )
        for key in _LIST_KEYS:
            xs = result.get(key)
            if isinstance(xs, list):
                if not xs:
                    return "empty", f"{t}: empty (0 {key})"
                return "ok", f"{t}: ok ({len(xs)} {key})"
        name = result.get("name")
        if name:
            return "ok", _truncate(f"{t}: ok ({name})", 160)

    return "ok", f"{t}: ok"
