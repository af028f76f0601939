"""Error report model and its JSON, Markdown and HTML renderings."""

from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

REPORT_RECENT_LIMIT = 100


class _ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorStats(_ReportModel):
    total: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_code: Dict[str, int] = Field(default_factory=dict)
    recovered: int = 0
    fatal: int = 0
    rate_limited: int = 0
    groups: int = 0
    stored: int = 0


class GroupSummary(_ReportModel):
    fingerprint: str
    category: str
    code: str
    message: str
    count: int
    first_seen: datetime
    last_seen: datetime


class RecentEntry(_ReportModel):
    id: str
    timestamp: datetime
    message: str
    category: str
    code: str


class ErrorReport(_ReportModel):
    """Snapshot of handler statistics, groups and recent records."""

    generated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stats: ErrorStats
    groups: List[GroupSummary] = Field(default_factory=list)
    recent: List[RecentEntry] = Field(default_factory=list)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_markdown(self) -> str:
        stats = self.stats
        lines = [
            "# Error Report",
            "",
            f"Generated: {self.generated.isoformat()}",
            "",
            "## Summary",
            "",
            f"- **Total:** {stats.total}",
            f"- **Recovered:** {stats.recovered}",
            f"- **Fatal:** {stats.fatal}",
            f"- **Rate limited:** {stats.rate_limited}",
            f"- **Groups:** {stats.groups}",
        ]
        if stats.by_category:
            lines.extend(["", "### By category", ""])
            lines.extend(f"- {name}: {count}" for name, count in sorted(stats.by_category.items()))

        if self.groups:
            lines.extend(
                [
                    "",
                    "## Groups",
                    "",
                    "| Fingerprint | Category | Code | Count | Message |",
                    "|---|---|---|---|---|",
                ]
            )
            for group in self.groups:
                message = group.message.replace("|", "\\|").replace("\n", " ")
                lines.append(
                    f"| `{group.fingerprint}` | {group.category} | {group.code} | {group.count} | {message} |"
                )

        if self.recent:
            lines.extend(["", "## Recent errors", ""])
            for entry in self.recent:
                lines.append(f"- {entry.timestamp.isoformat()} `{entry.code}` {entry.message}")
        return "\n".join(lines) + "\n"

    def to_html(self) -> str:
        e = html.escape
        stats = self.stats
        parts = [
            "<!DOCTYPE html>",
            '<html><head><meta charset="utf-8"><title>Error Report</title></head><body>',
            "<h1>Error Report</h1>",
            f"<p>Generated: {e(self.generated.isoformat())}</p>",
            "<ul>",
            f"<li>Total: {stats.total}</li>",
            f"<li>Recovered: {stats.recovered}</li>",
            f"<li>Fatal: {stats.fatal}</li>",
            f"<li>Rate limited: {stats.rate_limited}</li>",
            f"<li>Groups: {stats.groups}</li>",
            "</ul>",
        ]
        if self.groups:
            parts.append("<h2>Groups</h2>")
            parts.append("<table><tr><th>Fingerprint</th><th>Category</th><th>Code</th><th>Count</th><th>Message</th></tr>")
            for group in self.groups:
                parts.append(
                    f"<tr><td><code>{e(group.fingerprint)}</code></td><td>{e(group.category)}</td>"
                    f"<td>{e(group.code)}</td><td>{group.count}</td><td>{e(group.message)}</td></tr>"
                )
            parts.append("</table>")
        if self.recent:
            parts.append("<h2>Recent errors</h2>")
            parts.append("<ul>")
            for entry in self.recent:
                parts.append(
                    f"<li>{e(entry.timestamp.isoformat())} <code>{e(entry.code)}</code> {e(entry.message)}</li>"
                )
            parts.append("</ul>")
        parts.append("</body></html>")
        return "\n".join(parts) + "\n"

    def render(self, fmt: str = "json") -> str:
        fmt = fmt.lower()
        if fmt == "json":
            return self.to_json()
        if fmt in ("markdown", "md"):
            return self.to_markdown()
        if fmt == "html":
            return self.to_html()
        raise ValueError(f"Unsupported report format '{fmt}'. Valid formats: json, markdown, html")
