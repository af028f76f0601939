"""Renderers turning an error record into CLI, JSON, HTML, Markdown or log text.

All functions are pure: they read the error and return a string or dict.
"""

from __future__ import annotations

import html
import json
from collections import OrderedDict
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from rich.markup import escape

from .base import ErrorSeverity, GeneratorError
from .types import ValidationError

STACK_EXCERPT_LINES = 10

SEVERITY_ICONS = {
    ErrorSeverity.INFO: "ℹ",
    ErrorSeverity.WARNING: "⚠",
    ErrorSeverity.ERROR: "✖",
    ErrorSeverity.FATAL: "☠",
}


class OutputFormat(str, Enum):
    CLI = "cli"
    JSON = "json"
    HTML = "html"
    MARKDOWN = "markdown"
    LOG = "log"

    @classmethod
    def parse(cls, value: Union["OutputFormat", str]) -> "OutputFormat":
        if isinstance(value, OutputFormat):
            return value
        normalized = str(value).strip().lower()
        if normalized == "md":
            normalized = "markdown"
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown output format '{value}'. Valid formats: {valid}") from None


def phase_of(error: GeneratorError) -> Optional[str]:
    """Pipeline phase recorded for the error, falling back to its operation."""
    phase = error.context.get("phase")
    return str(phase) if phase else error.operation


# --------------------------------------------------------------------------
# JSON
# --------------------------------------------------------------------------


def _to_jsonable(value: Any, _seen: Optional[set] = None) -> Any:
    """Convert ``value`` to JSON-safe data, replacing reference cycles with "[Circular]"."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)

    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        return "[Circular]"

    if isinstance(value, BaseModel):
        seen.add(id(value))
        try:
            return {to_camel(name): _to_jsonable(getattr(value, name), seen) for name in type(value).model_fields}
        finally:
            seen.discard(id(value))
    if isinstance(value, GeneratorError):
        return {"name": value.name, "code": value.code, "message": value.message}
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": str(value)}

    if isinstance(value, dict):
        seen.add(id(value))
        try:
            return {str(k): _to_jsonable(v, seen) for k, v in value.items()}
        finally:
            seen.discard(id(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        seen.add(id(value))
        try:
            return [_to_jsonable(v, seen) for v in value]
        finally:
            seen.discard(id(value))

    return repr(value)


def _details_dict(error: GeneratorError, include_schema: bool) -> Optional[Dict[str, Any]]:
    if error.details is None:
        return None
    details = _to_jsonable(error.details)
    if isinstance(error, ValidationError):
        schema = details.pop("schemaSnippet", None)
        if include_schema and schema is not None:
            details["schema"] = schema
    return details


def to_json_dict(
    error: GeneratorError,
    *,
    include_stack: bool = False,
    include_schema: bool = False,
) -> Dict[str, Any]:
    """Structured form of an error; ``stack`` is present only when requested.

    Keys are camelCase, matching the exported report. Context and metadata
    keys are kept as given.
    """
    data: Dict[str, Any] = OrderedDict(
        id=error.id,
        name=error.name,
        code=error.code,
        message=error.message,
        userMessage=error.user_message,
        category=error.category.value,
        severity=error.severity.value,
        recoverable=error.recoverable,
        kind=error.kind.value,
        fingerprint=error.fingerprint,
        timestamp=error.timestamp.isoformat(),
        location=error.location.model_dump() if error.location else None,
        operation=error.operation,
        context=_to_jsonable(error.context),
        metadata=_to_jsonable(error.metadata),
        causeChain=[_to_jsonable(cause) for cause in error.cause_chain],
        details=_details_dict(error, include_schema),
        suggestions=list(error.suggestions),
        documentation=error.documentation,
    )
    if include_stack:
        data["stack"] = error.stack
    return dict(data)


def format_json(error: GeneratorError, *, include_stack: bool = False, include_schema: bool = False, indent: int = 2) -> str:
    return json.dumps(
        to_json_dict(error, include_stack=include_stack, include_schema=include_schema),
        indent=indent,
        ensure_ascii=False,
    )


# --------------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------------


class _Markup:
    """Wraps user text in rich markup, or leaves it plain."""

    def __init__(self, enabled: bool):
        self.enabled = enabled

    def __call__(self, text: Any, style: Optional[str] = None) -> str:
        text = str(text)
        if not self.enabled:
            return text
        text = escape(text)
        return f"[{style}]{text}[/{style}]" if style else text


def _stack_excerpt(stack: str) -> List[str]:
    lines = stack.splitlines()
    excerpt = lines[:STACK_EXCERPT_LINES]
    if len(lines) > STACK_EXCERPT_LINES:
        excerpt.append(f"... {len(lines) - STACK_EXCERPT_LINES} more lines")
    return excerpt


def format_cli(
    error: GeneratorError,
    *,
    debug: bool = False,
    markup: bool = True,
    documentation_url: Optional[str] = None,
) -> str:
    """Human-readable block for the terminal.

    Recoverable errors are styled as warnings (yellow), all others as errors
    (red). The stack excerpt appears only in debug mode.
    """
    m = _Markup(markup)
    color = "yellow" if error.recoverable and error.severity is not ErrorSeverity.FATAL else "red"
    icon = SEVERITY_ICONS.get(error.severity, "✖")
    label = "Warning" if color == "yellow" else "Fatal" if error.severity is ErrorSeverity.FATAL else "Error"

    lines = [f"{m(f'{icon} {label}', f'bold {color}')}: {m(error.user_message)}"]
    lines.append(m(f"Code: {error.code}", "dim"))
    category_line = f"Category: {error.category.value}"
    phase = phase_of(error)
    if phase:
        category_line += f" | Phase: {phase}"
    lines.append(m(category_line, "dim"))
    if error.location:
        lines.append(m(f"Location: {error.location}", "dim"))

    if isinstance(error, ValidationError) and error.failures:
        lines.append("")
        lines.append(m("Validation errors:", color))
        for path, group in error.groups.items():
            lines.append(f"  {m(path, 'cyan')} ({group.severity})")
            for failure in group.failures:
                lines.append(f"    • {m(failure.message or failure.keyword)}")

    diagnostics = error.diagnostics

    if diagnostics.suggestions:
        lines.append("")
        lines.append(m("Suggestions:", "yellow"))
        for suggestion in diagnostics.suggestions:
            lines.append(f"  • {m(suggestion)}")

    if diagnostics.solutions:
        lines.append("")
        lines.append(m("Solutions:", "green"))
        for i, solution in enumerate(diagnostics.solutions, 1):
            lines.append(f"  {i}. {m(solution.title, 'bold')}")
            if solution.command:
                lines.append(f"     $ {m(solution.command, 'cyan')}")
            elif solution.suggestion:
                lines.append(f"     {m(solution.suggestion)}")

    if diagnostics.commands:
        lines.append("")
        lines.append(m("Diagnostics:", "green"))
        for i, command in enumerate(diagnostics.commands, 1):
            lines.append(f"  {i}. {m(command.title)}: {m(command.command, 'cyan')}")

    if diagnostics.fixes:
        lines.append("")
        lines.append(m("Fixes:", "green"))
        for fix in diagnostics.fixes:
            lines.append(f"  {m(fix.issue, 'bold')}")
            for i, solution in enumerate(fix.solutions, 1):
                lines.append(f"    {i}. {m(solution)}")

    if error.recoverable and diagnostics.recovery_steps:
        lines.append("")
        lines.append(m("Recovery steps:", "green"))
        for i, plan in enumerate(diagnostics.recovery_steps, 1):
            lines.append(f"  {i}. {m(plan.description)}")

    if diagnostics.alternatives:
        lines.append("")
        lines.append(m("Alternative locations:", "green"))
        for alternative in diagnostics.alternatives:
            lines.append(f"  • {m(alternative.path)} ({m(alternative.description)})")

    docs = error.documentation or documentation_url
    if docs:
        lines.append("")
        lines.append(f"{m('Documentation:', 'blue')} {m(docs)}")

    if debug and error.stack:
        lines.append("")
        lines.append(m("Stack trace:", "dim"))
        lines.extend(m(line, "dim") for line in _stack_excerpt(error.stack))

    return "\n".join(lines)


# --------------------------------------------------------------------------
# HTML / Markdown / log
# --------------------------------------------------------------------------


def _pretty_json(value: Any) -> str:
    return json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False)


def _extra_sections(error: GeneratorError, include_stack: bool) -> List[tuple]:
    """Titled blocks shared by the HTML and Markdown renderers."""
    sections = []
    if error.context:
        sections.append(("Context", "json", _pretty_json(error.context)))
    if error.metadata:
        sections.append(("Metadata", "json", _pretty_json(error.metadata)))
    if error.details is not None:
        sections.append(("Details", "json", _pretty_json(_details_dict(error, include_schema=False))))
    if error.cause_chain:
        sections.append(("Cause chain", "json", _pretty_json(list(error.cause_chain))))
    if include_stack and error.stack:
        sections.append(("Stack trace", "", error.stack))
    return sections


def _summary_rows(error: GeneratorError) -> List[tuple]:
    rows = [
        ("ID", error.id),
        ("Code", error.code),
        ("Message", error.user_message),
        ("Category", error.category.value),
        ("Severity", error.severity.value),
        ("Recoverable", "yes" if error.recoverable else "no"),
        ("Fingerprint", error.fingerprint),
        ("Timestamp", error.timestamp.isoformat()),
    ]
    if error.location:
        rows.append(("Location", str(error.location)))
    if error.operation:
        rows.append(("Operation", error.operation))
    phase = phase_of(error)
    if phase and phase != error.operation:
        rows.append(("Phase", phase))
    return rows


def format_html(error: GeneratorError, *, include_stack: bool = False) -> str:
    """HTML fragment with all user text escaped.

    Carries the same fields as the JSON form; structured fields are rendered
    as collapsible ``<details>`` blocks.
    """
    e = html.escape
    severity = error.severity.value

    parts = [
        f'<div class="oasgen-error severity-{e(severity)}" id="{e(error.id)}">',
        f"  <h2>{e(SEVERITY_ICONS.get(error.severity, ''))} {e(error.name)}: {e(error.message)}</h2>",
        "  <dl>",
    ]
    for key, value in _summary_rows(error):
        parts.append(f"    <dt>{e(key)}</dt><dd>{e(str(value))}</dd>")
    parts.append("  </dl>")

    suggestions = error.suggestions
    if suggestions:
        parts.append("  <h3>Suggestions</h3>")
        parts.append("  <ul>")
        parts.extend(f"    <li>{e(s)}</li>" for s in suggestions)
        parts.append("  </ul>")

    solutions = error.diagnostics.solutions
    if solutions:
        parts.append("  <h3>Solutions</h3>")
        parts.append("  <ol>")
        for solution in solutions:
            body = f"<code>{e(solution.command)}</code>" if solution.command else e(solution.suggestion or "")
            parts.append(f"    <li><strong>{e(solution.title)}</strong> {body}</li>")
        parts.append("  </ol>")

    for title, _, text in _extra_sections(error, include_stack):
        parts.append(f"  <details><summary>{e(title)}</summary><pre>{e(text)}</pre></details>")
    if error.documentation:
        parts.append(f'  <p><a href="{e(error.documentation)}">Documentation</a></p>')
    parts.append("</div>")
    return "\n".join(parts)


def format_markdown(error: GeneratorError, *, include_stack: bool = False) -> str:
    icon = SEVERITY_ICONS.get(error.severity, "")
    lines = [f"## {icon} {error.name}: {error.message}", ""]
    for key, value in _summary_rows(error):
        if key in ("ID", "Code", "Fingerprint", "Location"):
            value = f"`{value}`"
        lines.append(f"- **{key}:** {value}")

    if error.suggestions:
        lines.extend(["", "### Suggestions", ""])
        lines.extend(f"- {s}" for s in error.suggestions)

    commands = [s.command for s in error.diagnostics.solutions if s.command]
    commands.extend(c.command for c in error.diagnostics.commands)
    if commands:
        lines.extend(["", "### Commands", "", "```sh", *commands, "```"])

    for title, lang, text in _extra_sections(error, include_stack):
        lines.extend(["", f"### {title}", "", f"```{lang}", text, "```"])
    if error.documentation:
        lines.extend(["", f"[Documentation]({error.documentation})"])
    return "\n".join(lines)


def format_log_line(error: GeneratorError) -> str:
    """Single line: ``timestamp [SEVERITY] [CODE] message at file:line:col (phase)``."""
    line = f"{error.timestamp.isoformat()} [{error.severity.value.upper()}] [{error.code}] {error.message}"
    if error.location:
        line += f" at {error.location}"
    phase = phase_of(error)
    if phase:
        line += f" ({phase})"
    return " ".join(line.splitlines())


def format_summary(errors: Iterable[GeneratorError], *, markup: bool = True) -> str:
    """Bulk summary grouped by category."""
    m = _Markup(markup)
    by_category: Dict[str, List[GeneratorError]] = OrderedDict()
    for error in errors:
        by_category.setdefault(error.category.value, []).append(error)

    total = sum(len(items) for items in by_category.values())
    if total == 0:
        return m("No errors", "green")

    recoverable = sum(1 for items in by_category.values() for error in items if error.recoverable)
    lines = [m(f"{total} error{'s' if total != 1 else ''} ({recoverable} recoverable)", "bold")]
    for category, items in by_category.items():
        lines.append("")
        lines.append(m(f"{category} ({len(items)})", "cyan"))
        for error in items:
            icon = SEVERITY_ICONS.get(error.severity, "✖")
            location = f" at {error.location}" if error.location else ""
            lines.append(f"  {icon} {m(error.code, 'dim')} {m(error.message)}{m(location)}")
    return "\n".join(lines)


def format_error(
    error: GeneratorError,
    fmt: Union[OutputFormat, str] = OutputFormat.CLI,
    *,
    debug: bool = False,
    include_stack: bool = False,
    include_schema: bool = False,
    markup: bool = True,
    documentation_url: Optional[str] = None,
) -> str:
    """Render ``error`` in the requested format."""
    fmt = OutputFormat.parse(fmt)
    if fmt is OutputFormat.CLI:
        return format_cli(error, debug=debug, markup=markup, documentation_url=documentation_url)
    if fmt is OutputFormat.JSON:
        return format_json(error, include_stack=include_stack, include_schema=include_schema)
    if fmt is OutputFormat.HTML:
        return format_html(error, include_stack=include_stack or debug)
    if fmt is OutputFormat.MARKDOWN:
        return format_markdown(error, include_stack=include_stack or debug)
    return format_log_line(error)
