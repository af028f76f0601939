"""Diagnostics synthesis.

Turns the typed ``details`` payload of an error into suggestions, remediation
commands, alternative paths and debugging tips. Dispatch is a table keyed on
``GeneratorError.kind``; each entry is a plain function.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from .base import ErrorKind

if TYPE_CHECKING:
    from .base import GeneratorError

APP_DIR_NAME = "oasgen"


class Solution(BaseModel):
    """A remediation: a command to run or a manual suggestion."""

    title: str
    command: Optional[str] = None
    suggestion: Optional[str] = None
    description: str = ""


class AlternativePath(BaseModel):
    path: str
    description: str


class RecoveryPlan(BaseModel):
    name: str
    description: str
    steps: List[str] = Field(default_factory=list)


class CleanupInstruction(BaseModel):
    title: str
    commands: List[str] = Field(default_factory=list)
    description: str = ""


class Fix(BaseModel):
    issue: str
    solutions: List[str] = Field(default_factory=list)


class DebuggingTip(BaseModel):
    title: str
    description: str
    commands: List[str] = Field(default_factory=list)
    code: Optional[str] = None


class DiagnosticCommand(BaseModel):
    title: str
    command: str
    description: str = ""


class Fallback(BaseModel):
    name: str
    description: str


class Diagnostics(BaseModel):
    """Everything synthesized for one error."""

    suggestions: List[str] = Field(default_factory=list)
    solutions: List[Solution] = Field(default_factory=list)
    commands: List[DiagnosticCommand] = Field(default_factory=list)
    alternatives: List[AlternativePath] = Field(default_factory=list)
    recovery_steps: List[RecoveryPlan] = Field(default_factory=list)
    cleanup: List[CleanupInstruction] = Field(default_factory=list)
    fixes: List[Fix] = Field(default_factory=list)
    debugging_tips: List[DebuggingTip] = Field(default_factory=list)
    fallbacks: List[Fallback] = Field(default_factory=list)
    documentation: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.suggestions,
                self.solutions,
                self.commands,
                self.alternatives,
                self.fixes,
                self.fallbacks,
            )
        )


def _dedupe(items: List[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


# --------------------------------------------------------------------------
# Validation
# --------------------------------------------------------------------------


def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values)
    return str(values)


VALIDATION_SUGGESTIONS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "required": lambda p: f"Add the required field '{p.get('missingProperty')}'",
    "type": lambda p: f"Change the value to type '{p.get('type')}'",
    "enum": lambda p: f"Use one of the allowed values: {_join(p.get('allowedValues', []))}",
    "pattern": lambda p: f"Match the pattern: {p.get('pattern')}",
    "minLength": lambda p: f"Ensure the value has at least {p.get('limit')} characters",
    "maxLength": lambda p: f"Ensure the value has at most {p.get('limit')} characters",
    "minimum": lambda p: f"Use a value >= {p.get('limit')}",
    "maximum": lambda p: f"Use a value <= {p.get('limit')}",
    "format": lambda p: f"Use the correct format: {p.get('format')}",
    "additionalProperties": lambda p: f"Remove the unexpected property '{p.get('additionalProperty')}'",
    "uniqueItems": lambda p: "Ensure all array items are unique",
    "dependencies": lambda p: f"Include required dependencies: {_join(p.get('deps', []))}",
    "oneOf": lambda p: "Ensure the value matches exactly one schema",
    "anyOf": lambda p: "Ensure the value matches at least one schema",
    "allOf": lambda p: "Ensure the value matches all schemas",
    "not": lambda p: "The value should not match the schema",
}


def validation_suggestion(keyword: str, params: Dict[str, Any]) -> Optional[str]:
    builder = VALIDATION_SUGGESTIONS.get(keyword)
    return builder(params) if builder else None


def _synthesize_validation(error: "GeneratorError") -> Diagnostics:
    details = error.details
    suggestions = [validation_suggestion(f.keyword, f.params) for f in details.failures]
    return Diagnostics(suggestions=_dedupe([s for s in suggestions if s]))


# --------------------------------------------------------------------------
# File system
# --------------------------------------------------------------------------


def _quote(path: Optional[str]) -> str:
    return f'"{path}"' if path else '"<path>"'


def _permission_solutions(path: Optional[str], family: str) -> List[Solution]:
    if family == "windows":
        return [
            Solution(
                title="Run as Administrator",
                suggestion="Run your terminal or IDE as Administrator",
                description='Right-click on your terminal and select "Run as administrator"',
            ),
            Solution(
                title="Check file ownership",
                command=f"icacls {_quote(path)}",
                description="View current permissions and ownership",
            ),
            Solution(
                title="Grant permissions",
                command=f"icacls {_quote(path)} /grant %USERNAME%:F",
                description="Grant full control to current user",
            ),
        ]

    solutions = [
        Solution(
            title="Check file permissions",
            command=f"ls -la {_quote(path)}",
            description="View current permissions and ownership",
        ),
        Solution(
            title="Change ownership",
            command=f"sudo chown $USER {_quote(path)}",
            description="Change file ownership to current user",
        ),
        Solution(
            title="Modify permissions",
            command=f"chmod 755 {_quote(path)}",
            description="Grant read/write/execute permissions",
        ),
    ]
    if family == "darwin":
        solutions.append(
            Solution(
                title="Reset permissions (macOS)",
                command=f"sudo chmod -R 755 {_quote(path)}",
                description="Recursively reset permissions",
            )
        )
    return solutions


def _disk_space_solutions(family: str) -> List[Solution]:
    windows = family == "windows"
    return [
        Solution(
            title="Check disk space",
            command="dir" if windows else "df -h",
            description="View available disk space",
        ),
        Solution(
            title="Clean temporary files",
            command="cleanmgr /sagerun:1" if windows else "rm -rf /tmp/*",
            description="Remove temporary files to free space",
        ),
        Solution(
            title="Find large files",
            command=(
                'forfiles /S /M * /C "cmd /c if @fsize GEQ 104857600 echo @path @fsize"'
                if windows
                else "find . -type f -size +100M"
            ),
            description="Locate files larger than 100MB",
        ),
    ]


def shorter_path(path: Optional[str], family: str) -> Optional[str]:
    """Suggest a shorter form of ``path`` by truncating long directory names."""
    if not path:
        return None
    flavour = ntpath if family == "windows" else posixpath
    directory, base = flavour.split(path)
    parts = [part for part in directory.replace("\\", "/").split("/") if part]
    shortened = [part[:6] + "~1" if len(part) > 8 else part for part in parts]
    return flavour.join(*shortened, base) if shortened else base


def _path_length_solutions(path: Optional[str], family: str) -> List[Solution]:
    shorter = shorter_path(path, family)
    if family == "windows":
        directory = ntpath.dirname(path) if path else "<dir>"
        return [
            Solution(
                title="Enable long path support",
                command=(
                    "reg add HKLM\\SYSTEM\\CurrentControlSet\\Control\\FileSystem "
                    "/v LongPathsEnabled /t REG_DWORD /d 1"
                ),
                description="Enable Windows long path support (requires admin)",
            ),
            Solution(
                title="Use shorter path",
                suggestion=shorter,
                description="Use a path with fewer nested directories",
            ),
            Solution(
                title="Use subst command",
                command=f'subst Z: "{directory}"',
                description="Create a virtual drive to shorten the path",
            ),
        ]
    return [
        Solution(
            title="Use shorter path",
            suggestion=shorter,
            description="Reduce path depth or use shorter names",
        )
    ]


def _file_busy_solutions(path: Optional[str], family: str) -> List[Solution]:
    if family == "windows":
        name = ntpath.basename(path) if path else "<file>"
        solutions = [
            Solution(
                title="Find locking process",
                command=f'openfiles /query /fo table | findstr /i "{name}"',
                description="Identify which process has the file open",
            ),
            Solution(
                title="Use Handle utility",
                command=f"handle.exe {_quote(path)}",
                description="Use Sysinternals Handle to find locking process",
            ),
        ]
    else:
        solutions = [
            Solution(
                title="Find locking process",
                command=f"lsof {_quote(path)}",
                description="List processes using the file",
            ),
            Solution(
                title="Force unmount",
                command=f"fuser -k {_quote(path)}",
                description="Kill processes using the file (use with caution)",
            ),
        ]
    solutions.append(
        Solution(
            title="Wait and retry",
            suggestion="Wait a few seconds and try again",
            description="The file may be temporarily locked",
        )
    )
    return solutions


def _too_many_files_solutions(family: str) -> List[Solution]:
    if family == "windows":
        return [
            Solution(
                title="Increase handle limit",
                suggestion="Increase process handle limit in Windows",
                description="Requires system configuration changes",
            )
        ]
    return [
        Solution(title="Check current limit", command="ulimit -n", description="View current file descriptor limit"),
        Solution(
            title="Increase limit",
            command="ulimit -n 4096",
            description="Increase file descriptor limit for current session",
        ),
        Solution(
            title="Permanent increase",
            suggestion='Add "ulimit -n 4096" to ~/.bashrc or ~/.zshrc',
            description="Make the change permanent",
        ),
    ]


def _symlink_solutions(path: Optional[str], family: str) -> List[Solution]:
    windows = family == "windows"
    return [
        Solution(
            title="Check symlink chain",
            command=f"dir /al {_quote(path)}" if windows else f"ls -la {_quote(path)}",
            description="View symbolic link information",
        ),
        Solution(
            title="Resolve symlink",
            command=f"fsutil reparsepoint query {_quote(path)}" if windows else f"readlink -f {_quote(path)}",
            description="Get the final target of the symlink",
        ),
        Solution(
            title="Remove symlink",
            command=f"del {_quote(path)}" if windows else f"rm {_quote(path)}",
            description="Remove the symbolic link",
        ),
    ]


def alternative_paths(family: str) -> List[AlternativePath]:
    """Writable fallback locations for generated output."""
    alternatives = [
        AlternativePath(path=str(Path.home() / "Documents" / "generated"), description="User documents folder"),
        AlternativePath(path=os.path.join(tempfile.gettempdir(), APP_DIR_NAME), description="System temporary directory"),
        AlternativePath(path=os.path.join(os.getcwd(), "output"), description="Current working directory"),
    ]
    if family == "windows":
        alternatives.append(AlternativePath(path=f"C:\\temp\\{APP_DIR_NAME}", description="Windows temp directory"))
    else:
        alternatives.append(AlternativePath(path=f"/var/tmp/{APP_DIR_NAME}", description="System var temp directory"))
    return alternatives


FILESYSTEM_RECOVERY_PLANS = [
    RecoveryPlan(
        name="retry",
        description="Retry the operation after addressing the issue",
        steps=[
            "Identify the specific error from the solutions",
            "Apply the recommended fix",
            "Retry the operation",
        ],
    ),
    RecoveryPlan(
        name="alternative",
        description="Use an alternative location or approach",
        steps=[
            "Choose an alternative path from suggestions",
            "Ensure the alternative location is accessible",
            "Update configuration to use new path",
        ],
    ),
    RecoveryPlan(
        name="escalate",
        description="Escalate privileges if needed",
        steps=[
            "Run with elevated privileges (sudo/admin)",
            "Check if operation succeeds",
            "Consider permission changes for future runs",
        ],
    ),
]


def _cleanup_instructions(
    path: Optional[str],
    operation: Optional[str],
    system_code: Optional[str],
    family: str,
) -> List[CleanupInstruction]:
    windows = family == "windows"
    instructions: List[CleanupInstruction] = []
    if operation in ("write", "create") and path:
        directory = (ntpath if windows else posixpath).dirname(path)
        commands = (
            [f'del /f "{path}"', f'rmdir /s /q "{directory}"']
            if windows
            else [f'rm -f "{path}"', f'rm -rf "{directory}"']
        )
        instructions.append(
            CleanupInstruction(
                title="Remove partial files",
                commands=commands,
                description="Clean up any partially written files",
            )
        )
    if system_code == "ENOSPC":
        commands = (
            ["cleanmgr /sagerun:1", "del /q /f /s %TEMP%\\*"]
            if windows
            else ["rm -rf /tmp/*", "pip cache purge", "docker system prune -a"]
        )
        instructions.append(
            CleanupInstruction(
                title="Free disk space",
                commands=commands,
                description="Commands to free up disk space",
            )
        )
    return instructions


_FILESYSTEM_SOLUTIONS: Dict[str, Callable[[Optional[str], str], List[Solution]]] = {
    "EACCES": _permission_solutions,
    "EPERM": _permission_solutions,
    "ENOSPC": lambda path, family: _disk_space_solutions(family),
    "ENAMETOOLONG": _path_length_solutions,
    "EBUSY": _file_busy_solutions,
    "EMFILE": lambda path, family: _too_many_files_solutions(family),
    "ELOOP": _symlink_solutions,
}


def _synthesize_filesystem(error: "GeneratorError") -> Diagnostics:
    details = error.details
    family = details.platform
    builder = _FILESYSTEM_SOLUTIONS.get(details.system_code or "")
    solutions = builder(details.path, family) if builder else []

    suggestions: List[str] = []
    info = details.path_info
    if info is not None:
        if info.exceeds_limit and details.system_code != "ENAMETOOLONG":
            suggestions.append(
                f"Path is {info.length} characters, above the {info.max_path_length} character limit"
            )
        if info.problematic_chars:
            suggestions.append(f"Remove unsupported characters from the path: {', '.join(info.problematic_chars)}")
        if info.is_system_path:
            suggestions.append("Write generated output outside system directories")
    suggestions.extend(s.title for s in solutions)

    alternatives = alternative_paths(family) if details.system_code in ("ENOSPC", "EACCES", "EPERM", "EROFS") else []
    return Diagnostics(
        suggestions=_dedupe(suggestions),
        solutions=solutions,
        alternatives=alternatives,
        recovery_steps=list(FILESYSTEM_RECOVERY_PLANS) if error.recoverable else [],
        cleanup=_cleanup_instructions(details.path, details.operation, details.system_code, family),
    )


# --------------------------------------------------------------------------
# Network
# --------------------------------------------------------------------------


def _network_commands(issue: str, host: Optional[str], port: Optional[int], url: Optional[str], family: str) -> List[DiagnosticCommand]:
    windows = family == "windows"
    host = host or "<host>"
    port = port or 443
    commands: List[DiagnosticCommand] = []

    if issue == "dns":
        commands.append(DiagnosticCommand(title="DNS lookup", command=f"nslookup {host}", description="Check that the host name resolves"))
        if not windows:
            commands.append(DiagnosticCommand(title="Detailed DNS query", command=f"dig {host}", description="Inspect DNS records and resolver"))
    if issue in ("connection", "timeout", "unreachable"):
        commands.append(
            DiagnosticCommand(
                title="Check port",
                command=f"Test-NetConnection {host} -Port {port}" if windows else f"nc -zv {host} {port}",
                description="Check that the port accepts connections",
            )
        )
        commands.append(
            DiagnosticCommand(
                title="Ping host",
                command=f"ping -n 4 {host}" if windows else f"ping -c 4 {host}",
                description="Check basic reachability",
            )
        )
    if issue in ("timeout", "unreachable"):
        commands.append(
            DiagnosticCommand(
                title="Trace route",
                command=f"tracert {host}" if windows else f"traceroute {host}",
                description="Find where packets are dropped",
            )
        )
    if issue in ("server", "rate_limit", "client") and url:
        commands.append(DiagnosticCommand(title="Inspect response headers", command=f"curl -I {url}", description="Check status and headers returned by the server"))
    return commands


NETWORK_SUGGESTIONS: Dict[str, List[str]] = {
    "dns": ["Check the host name for typos", "Verify your DNS settings or try another resolver"],
    "connection": ["Verify the server is running and accepting connections", "Check firewall rules for the target port"],
    "timeout": ["Increase the request timeout", "Check your network connection"],
    "unreachable": ["Check your network connection", "Verify VPN or routing configuration"],
    "server": ["The server failed to handle the request; retry later", "Check the service status page"],
    "rate_limit": ["Wait before retrying; the server is rate limiting requests", "Reduce request frequency"],
    "client": ["Check the request URL and credentials"],
    "unknown": ["Check your network connection"],
}

NETWORK_FALLBACKS = [
    Fallback(name="cached", description="Use the cached copy of the spec from the last successful fetch"),
    Fallback(name="local", description="Point the generator at a local copy of the spec file"),
    Fallback(name="bundled", description="Use the bundled fallback spec"),
]


def _synthesize_network(error: "GeneratorError") -> Diagnostics:
    details = error.details
    suggestions = list(NETWORK_SUGGESTIONS.get(details.issue, NETWORK_SUGGESTIONS["unknown"]))
    if details.status_code == 401:
        suggestions.insert(0, "Provide valid authentication credentials")
    elif details.status_code == 403:
        suggestions.insert(0, "Check that your credentials have access to this resource")
    elif details.status_code == 404:
        suggestions.insert(0, "Verify the spec URL is correct")
    if details.proxy:
        suggestions.append("A proxy is configured; verify the proxy settings allow this host")
    if details.retry_after_ms is not None:
        suggestions.append(f"Retry after {details.retry_after_ms} ms")

    return Diagnostics(
        suggestions=_dedupe(suggestions),
        commands=_network_commands(
            details.issue,
            getattr(error, "host", None),
            getattr(error, "port", None),
            details.url,
            details.platform,
        ),
        fallbacks=list(NETWORK_FALLBACKS),
    )


# --------------------------------------------------------------------------
# Templates
# --------------------------------------------------------------------------

UNDEFINED_DEFAULTS = {
    "jinja2": lambda name: (f"{{{{ {name} | default('') }}}}", f"{{% if {name} %}}...{{% endif %}}"),
    "handlebars": lambda name: (f"{{{{{name} || 'default'}}}}", f"{{{{#if {name}}}}}...{{{{/if}}}}"),
    "mustache": lambda name: (f"{{{{^{name}}}}}default{{{{/{name}}}}}", f"{{{{#{name}}}}}...{{{{/{name}}}}}"),
    "mako": lambda name: (f"${{{name} or ''}}", f"% if {name}:\n...\n% endif"),
}

SYNTAX_FIXES = {
    "unclosed": [
        "Check for missing closing tags",
        "Ensure every opening block tag has a matching closing tag",
        "Verify every loop block is closed",
    ],
    "expected": [
        "Check template syntax documentation",
        "Verify correct tag format for your template engine",
        "Look for missing or extra characters",
    ],
}

LINT_COMMANDS = {
    "jinja2": ["djlint --check templates/", "python -c \"import jinja2; jinja2.Environment().parse(open('<template>').read())\""],
    "handlebars": ["npx handlebars --simple <template>"],
    "mustache": ["npx mustache --check <template>"],
    "mako": ["python -c \"from mako.template import Template; Template(filename='<template>')\""],
}

HELPER_LISTING = {
    "jinja2": "print(sorted(env.filters), sorted(env.tests))",
    "handlebars": "console.log(Object.keys(Handlebars.helpers));",
    "mustache": "Mustache has no helpers; pass lambdas in the view instead",
    "mako": "print(template.module.__dict__.keys())",
}


def _syntax_fixes(text: str) -> List[str]:
    lowered = text.lower()
    suggestions: List[str] = []
    if "unclosed" in lowered or "unexpected end" in lowered:
        suggestions.extend(SYNTAX_FIXES["unclosed"])
    if "expected" in lowered:
        suggestions.extend(SYNTAX_FIXES["expected"])
    return suggestions or list(SYNTAX_FIXES["expected"])


def _synthesize_template(error: "GeneratorError") -> Diagnostics:
    details = error.details
    engine = details.engine
    fixes: List[Fix] = []

    if details.undefined_variable:
        name = details.undefined_variable
        default, conditional = UNDEFINED_DEFAULTS.get(engine, UNDEFINED_DEFAULTS["jinja2"])(name)
        fixes.append(
            Fix(
                issue=f"Undefined variable: {name}",
                solutions=[
                    f"Ensure '{name}' is passed in the template context",
                    f"Add a default value: {default}",
                    f"Use conditional: {conditional}",
                    "Check for typos in variable name",
                ],
            )
        )
    if details.missing_helper:
        name = details.missing_helper
        fixes.append(
            Fix(
                issue=f"Missing helper: {name}",
                solutions=[
                    f"Register the '{name}' helper before rendering",
                    "Check helper name spelling",
                    "Use a built-in helper instead",
                    "Import helper from common helpers library",
                ],
            )
        )
    if details.missing_partial:
        name = details.missing_partial
        extension = getattr(error, "extension", "html")
        filename = name if Path(name).suffix else f"{name}.{extension}"
        fixes.append(
            Fix(
                issue=f"Missing partial: {name}",
                solutions=[
                    f"Create the partial file: {filename}",
                    "Register the partial before rendering",
                    "Check partial path and name",
                    "Ensure partial directory is configured",
                ],
            )
        )
    if details.syntax_error:
        fixes.append(Fix(issue=f"Syntax error: {details.syntax_error}", solutions=_syntax_fixes(details.syntax_error)))

    suggestions = [solution for fix in fixes for solution in fix.solutions]
    if details.available_variables and details.undefined_variable:
        suggestions.append(f"Available variables: {', '.join(details.available_variables)}")

    tips = [
        DebuggingTip(
            title="Enable Debug Mode",
            description="Run with debug output to see detailed template compilation errors",
            commands=["export OASGEN_ERRORS_DEBUG=true"],
        ),
        DebuggingTip(
            title="Log Template Context",
            description="Log the context passed to the template to see which variables are available",
            code="logger.debug(f'Template context: {sorted(context)}')",
        ),
        DebuggingTip(
            title="Validate Template Syntax",
            description="Use linting tools for your template engine",
            commands=LINT_COMMANDS.get(engine, []),
        ),
        DebuggingTip(
            title="Check Helper Registration",
            description="List all registered helpers",
            code=HELPER_LISTING.get(engine),
        ),
    ]
    return Diagnostics(suggestions=_dedupe(suggestions), fixes=fixes, debugging_tips=tips)


# --------------------------------------------------------------------------
# Configuration and parsing
# --------------------------------------------------------------------------


def _synthesize_configuration(error: "GeneratorError") -> Diagnostics:
    details = error.details
    suggestions: List[str] = []
    where = f" in {details.config_file}" if details.config_file else ""
    if details.field and details.expected:
        suggestions.append(f"Set '{details.field}' to {details.expected}{where}")
    elif details.field:
        suggestions.append(f"Add '{details.field}' to your configuration{where}")
    suggestions.append("Run the generator with --init to create a default configuration file")
    return Diagnostics(suggestions=suggestions)


def _synthesize_parsing(error: "GeneratorError") -> Diagnostics:
    details = error.details
    suggestions: List[str] = []
    if details.line is not None:
        suggestions.append(f"Check the document near line {details.line}")
    if details.document_format == "yaml":
        suggestions.append("Check indentation and make sure tabs are not used")
        suggestions.append("Quote strings that contain ':' or '#'")
    elif details.document_format == "json":
        suggestions.append("Check for trailing commas and unquoted keys")
    suggestions.append("Validate the document with an OpenAPI linter")
    return Diagnostics(suggestions=suggestions)


def _synthesize_general(error: "GeneratorError") -> Diagnostics:
    return Diagnostics()


_SYNTHESIZERS: Dict[ErrorKind, Callable[["GeneratorError"], Diagnostics]] = {
    ErrorKind.GENERAL: _synthesize_general,
    ErrorKind.VALIDATION: _synthesize_validation,
    ErrorKind.FILESYSTEM: _synthesize_filesystem,
    ErrorKind.NETWORK: _synthesize_network,
    ErrorKind.TEMPLATE: _synthesize_template,
    ErrorKind.CONFIGURATION: _synthesize_configuration,
    ErrorKind.PARSING: _synthesize_parsing,
}


def synthesize(error: "GeneratorError") -> Diagnostics:
    """Build the diagnostics for ``error`` from its kind and details."""
    synthesizer = _SYNTHESIZERS.get(error.kind, _synthesize_general)
    if error.details is None and synthesizer is not _synthesize_general:
        synthesizer = _synthesize_general
    diagnostics = synthesizer(error)
    diagnostics.documentation = error.documentation
    logger.debug(
        f"Synthesized diagnostics for {error.code}: {len(diagnostics.suggestions)} suggestions, "
        f"{len(diagnostics.solutions)} solutions"
    )
    return diagnostics
