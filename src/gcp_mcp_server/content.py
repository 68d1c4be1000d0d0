"""Helpers that turn tool output into MCP ``content`` envelopes."""

import datetime
import json
from typing import Any, Dict, Iterable, List, Optional

from .errors import classify_error, error_suggestions

ToolResult = Dict[str, Any]

TIMESTAMP_FIELDS = frozenset({
    "creation_time",
    "start_time",
    "end_time",
    "last_modified_time",
    "creationTime",
    "updateTime",
})


def text_result(text: str, is_error: bool = False) -> ToolResult:
    result: ToolResult = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=_json_default)


def json_result(value: Any) -> ToolResult:
    return text_result(to_json(value))


def error_result(tool_name: str, error: BaseException) -> ToolResult:
    """Build the ``isError`` result reported for a failed tool call."""
    classified = classify_error(error)
    body = {
        "success": False,
        "tool": tool_name,
        "error": {
            "type": getattr(classified, "error_type", type(classified).__name__),
            "message": getattr(classified, "message", None) or str(classified),
            "suggestions": error_suggestions(classified),
        },
        "timestamp": utc_now_iso(),
    }
    return text_result(to_json(body), is_error=True)


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def iso_or_none(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def normalize_row(row: Any) -> Dict[str, Any]:
    """Convert a result row to a dict, rendering timestamp-like fields as ISO strings."""
    data = dict(row.items()) if hasattr(row, "items") else dict(row)
    for key, value in data.items():
        if key not in TIMESTAMP_FIELDS:
            continue
        if isinstance(value, (datetime.datetime, datetime.date)):
            data[key] = value.isoformat()
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # epoch milliseconds
            data[key] = datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc).isoformat()
    return data


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=_json_default)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def _csv_cell(value: Any) -> str:
    text = _cell(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def format_rows(rows: List[Dict[str, Any]], fmt: str = "json", max_rows: int = 100) -> str:
    """Render query rows as ``json``, a padded ``table`` or ``csv``, each fenced for Markdown."""
    if not rows:
        return "Query completed successfully but returned no results."

    shown = rows[:max_rows]
    truncated = len(rows) > max_rows
    note = f"\n\n**Note**: Showing first {len(shown)} of {len(rows)} rows." if truncated else ""

    if fmt == "table":
        headers = list(shown[0].keys())
        cells = [[_cell(row.get(h)) for h in headers] for row in shown]
        widths = [max([len(h)] + [len(r[i]) for r in cells]) for i, h in enumerate(headers)]
        lines = ["| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |"]
        lines.append("|-" + "|-".join("-" * w for w in widths) + "|")
        for r in cells:
            lines.append("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
        return "```\n" + "\n".join(lines) + "\n```" + note

    if fmt == "csv":
        headers = list(shown[0].keys())
        lines = [",".join(_csv_cell(h) for h in headers)]
        for row in shown:
            lines.append(",".join(_csv_cell(row.get(h)) for h in headers))
        return "```csv\n" + "\n".join(lines) + "\n```" + note

    header = f"Query returned {len(rows)} rows"
    if truncated:
        header += f" (showing first {len(shown)})"
    return f"{header}:\n\n```json\n{to_json(shown)}\n```"


def rows_to_dicts(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    return [normalize_row(row) for row in rows]
