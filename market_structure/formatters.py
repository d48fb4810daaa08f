from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _fmt_ms(ts_ms: Optional[int], tz=timezone.utc) -> str:
    if ts_ms is None:
        return "-"
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M")


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "HTML":
        return html.escape(str(text), quote=False)
    return str(text)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "HTML":
        return f"<b>{escaped}</b>"
    return escaped


def _section(title: str, rows: List[str], parse_mode: str) -> List[str]:
    if not rows:
        return []
    out = ["", _bold(title, parse_mode)]
    out.extend(f"- {_escape_text(r, parse_mode)}" for r in rows)
    return out


def format_analysis(envelope: Dict[str, Any], *, parse_mode: str = "TEXT") -> str:
    """Render an ``analyze`` envelope for a terminal (TEXT) or chat client (HTML)."""
    parse_mode = (parse_mode or "TEXT").upper()
    if not envelope.get("ok"):
        return _escape_text(f"Analysis failed: {envelope.get('error') or 'unknown error'}", parse_mode)

    market = envelope.get("market") or {}
    a = envelope.get("analysis") or {}
    pipe = "|"

    lines = [
        f"{_bold(market.get('symbol', '?'), parse_mode)}  {pipe}  {_bold(market.get('timeframe', '?'), parse_mode)}"
        f"  {pipe}  {_escape_text(market.get('exchange', '?'), parse_mode)}",
        _escape_text(
            f"Bars: {market.get('candleCount', 0)} ({_fmt_ms(market.get('start'))} -> {_fmt_ms(market.get('end'))} UTC)",
            parse_mode,
        ),
        "",
        _escape_text(a.get("summary") or "", parse_mode),
    ]

    confidence = a.get("regimeConfidence")
    regime = a.get("marketRegime") or "-"
    if confidence is not None:
        regime = f"{regime} (confidence {confidence})"
    lines.append(_escape_text(f"Regime: {regime}", parse_mode))
    lines.append(_escape_text(f"Structure: {a.get('marketStructure') or '-'}", parse_mode))

    bias = a.get("bias") or {}
    lines.append(_escape_text(
        f"Bias: bullish {bias.get('bullish', 0)}% / bearish {bias.get('bearish', 0)}% / neutral {bias.get('neutral', 0)}%",
        parse_mode,
    ))

    levels = []
    for lvl in reversed(a.get("supportResistance") or []):
        note = f" ({lvl['note']})" if lvl.get("note") else ""
        levels.append(f"{lvl['price']} {lvl['kind']}{note}")
    lines.extend(_section("Key levels", levels, parse_mode))

    scenarios = [
        f"{s['name']}: {s['trigger']}; {s['path']}; invalidation: {s.get('invalidation') or '-'}"
        for s in a.get("scenarios") or []
    ]
    lines.extend(_section("Scenarios", scenarios, parse_mode))

    targets = a.get("timeHorizonTargets") or {}
    target_rows = []
    for key, label in (("shortTerm", "Short"), ("mediumTerm", "Medium"), ("longTerm", "Long")):
        vals = targets.get(key) or []
        if vals:
            target_rows.append(f"{label}: {', '.join(vals)}")
    lines.extend(_section("Targets", target_rows, parse_mode))

    lines.extend(_section("Confluence", list(a.get("confluence") or []), parse_mode))
    lines.extend(_section("Indicators", list(a.get("indicators") or []), parse_mode))
    lines.extend(_section("Risk notes", list(a.get("riskNotes") or []), parse_mode))

    disclaimer = (a.get("disclaimer") or "").strip()
    if disclaimer:
        lines.append("")
        lines.append(_escape_text(disclaimer, parse_mode))
    return "\n".join(lines)
