from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Sequence

import yaml

from .contracts import ToolDefinition
from .jobs import JobRun
from .status import StatusReport

OUTPUT_TABLE = "table"
OUTPUT_JSON = "json"
OUTPUT_YAML = "yaml"
OUTPUT_FORMATS = (OUTPUT_TABLE, OUTPUT_JSON, OUTPUT_YAML)

_CELL_GAP = 2


def render_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    cells = [[str(value) for value in headers]]
    cells.extend([str(value if value is not None else "") for value in row] for row in rows)
    widths = [max(len(row[index]) for row in cells) for index in range(len(headers))]
    lines = []
    for row in cells:
        padded = [value.ljust(widths[index]) for index, value in enumerate(row)]
        lines.append((" " * _CELL_GAP).join(padded).rstrip())
    return "\n".join(lines) + "\n"


def render_data(payload: Any, output: str) -> str:
    if output == OUTPUT_JSON:
        return json.dumps(payload, indent=2) + "\n"
    if output == OUTPUT_YAML:
        return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)
    raise ValueError(f"unsupported output format: {output}")


def _short_time(value: datetime | None, fmt: str = "%Y-%m-%d %H:%M") -> str:
    return value.strftime(fmt) if value is not None else ""


def _command_summary(tool: ToolDefinition) -> str:
    if not tool.command:
        return ""
    return tool.command[0] + ("..." if len(tool.command) > 1 else "")


def render_tools(
    tools: Sequence[ToolDefinition],
    *,
    output: str = OUTPUT_TABLE,
    all_namespaces: bool = False,
) -> str:
    if output != OUTPUT_TABLE:
        return render_data([tool.as_dict() for tool in tools], output)
    headers = ["NAME", "IMAGE", "COMMAND", "ARGUMENTS", "CREATED"]
    if all_namespaces:
        headers.insert(1, "NAMESPACE")
    rows = []
    for tool in tools:
        row = [
            tool.name,
            tool.image,
            _command_summary(tool),
            f"{len(tool.arguments)} args" if tool.arguments else "",
            _short_time(tool.created),
        ]
        if all_namespaces:
            row.insert(1, tool.namespace)
        rows.append(row)
    return render_table(headers, rows)


def render_tool(tool: ToolDefinition, *, output: str = OUTPUT_TABLE) -> str:
    if output != OUTPUT_TABLE:
        return render_data(tool.as_dict(), output)
    lines = [
        f"Name:        {tool.name}",
        f"Namespace:   {tool.namespace}",
        f"Image:       {tool.image}",
    ]
    if tool.command:
        lines.append(f"Command:     {' '.join(tool.command)}")
    if tool.created is not None:
        lines.append(f"Created:     {_short_time(tool.created, '%Y-%m-%d %H:%M:%S')}")
    if tool.help:
        lines.extend(["", "Help:", f"  {tool.help}"])
    if tool.arguments:
        lines.extend(["", "Arguments:"])
        rows = [
            [
                spec.name,
                "yes" if spec.required else "no",
                spec.default if spec.default is not None else "",
                spec.description,
            ]
            for spec in tool.arguments
        ]
        table = render_table(["NAME", "REQUIRED", "DEFAULT", "DESCRIPTION"], rows)
        lines.extend(f"  {line}" for line in table.splitlines())
    if tool.env:
        lines.extend(["", "Environment:"])
        lines.extend(f"  {item.name}={item.value}" for item in tool.env)
    return "\n".join(lines) + "\n"


def render_job_runs(tool_name: str, runs: Sequence[JobRun], *, output: str = OUTPUT_TABLE) -> str:
    if output != OUTPUT_TABLE:
        return render_data([run.as_dict() for run in runs], output)
    if not runs:
        return f"No previous runs found for tool '{tool_name}'\n"
    rows = [
        [run.name, run.status, _short_time(run.created, "%Y-%m-%d %H:%M:%S"), run.duration]
        for run in runs
    ]
    return (
        f"Previous runs for tool '{tool_name}':\n\n"
        + render_table(["JOB NAME", "STATUS", "CREATED", "DURATION"], rows)
        + "\nTo view logs for a specific job, run:\n"
        + f"  rapt logs {tool_name} <job-name>\n"
        + "\nTo follow logs for the latest job, run:\n"
        + f"  rapt logs {tool_name} {runs[0].name} --follow\n"
    )


def render_status(report: StatusReport, *, output: str = OUTPUT_TABLE) -> str:
    if output != OUTPUT_TABLE:
        return render_data(report.as_dict(), output)
    crd = "Installed" if report.crd_installed else "Not Installed"
    if report.crd_installed and report.crd_created is not None:
        crd += f" (created: {_short_time(report.crd_created)})"
    lines = [
        "Rapt Status",
        "===========",
        f"Cluster:     {'Connected' if report.cluster_connected else 'Not Connected'}",
        f"CRD:         {crd}",
    ]
    if report.crd_name:
        lines.append(f"CRD Name:    {report.crd_name}")
    lines.append(f"Namespace:   {report.namespace}")
    lines.append(
        f"Scope:       {'All Namespaces' if report.all_namespaces else 'Current Namespace'}"
    )
    lines.append(f"Tools:       {report.tools_count}")
    if report.all_namespaces and report.tools_by_namespace:
        lines.extend(["", "Tools by Namespace:"])
        table = render_table(["NAMESPACE", "COUNT"], list(report.tools_by_namespace.items()))
        lines.extend(table.splitlines())
    if report.errors:
        lines.extend(["", "Issues:"])
        lines.extend(f"  - {message}" for message in report.errors)
    lines.extend(["", "Overall Status:"])
    if report.ready:
        lines.append("  Rapt is properly installed and ready to use")
    else:
        lines.append("  Rapt is not properly installed")
    return "\n".join(lines) + "\n"
