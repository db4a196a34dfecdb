"""Human-friendly output formatter - converts plans and apply results to readable text."""

import json
import os
from typing import Any, Dict, Iterable, List, Optional
from ..contracts.plan import OperationKind, Plan, PlanOperation
from ..contracts.results import ApplyResult, OperationStatus, RunStatus
from ..contracts.state import StateRecord
from ..evaluation.unknown import Unknown

SENSITIVE = "(sensitive value)"


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _box(title: str, width: int = 65, ascii_mode: bool = False) -> List[str]:
    """Return box-drawing header lines."""
    b = {"tl": "+", "tr": "+", "h": "-", "v": "|"} if ascii_mode else {"tl": "┌", "tr": "┐", "h": "─", "v": "│"}
    h = b["h"] * (width - 2)
    return [
        b["tl"] + h + b["tr"],
        f"{b['v']} {title:<{width - 4}} {b['v']}",
        ("+" if ascii_mode else "└") + h + ("+" if ascii_mode else "┘"),
        "",
    ]


def _section(title: str, width: int = 65) -> List[str]:
    """Return section divider."""
    h = "-" * width
    return [h, title.center(width), h]


SYMBOLS = {
    OperationKind.CREATE.value: "+",
    OperationKind.UPDATE.value: "~",
    OperationKind.REPLACE.value: "-/+",
    OperationKind.DESTROY.value: "-",
    OperationKind.NO_OP.value: " ",
}

VERBS = {
    OperationKind.CREATE.value: "will be created",
    OperationKind.UPDATE.value: "will be updated in-place",
    OperationKind.REPLACE.value: "must be replaced",
    OperationKind.DESTROY.value: "will be destroyed",
    OperationKind.NO_OP.value: "is up to date",
}


def _status_marks(ascii_mode: bool) -> Dict[str, str]:
    if ascii_mode:
        return {
            OperationStatus.SUCCESS.value: "[OK]",
            OperationStatus.FAILED.value: "[FAIL]",
            OperationStatus.SKIPPED.value: "[SKIP]",
            OperationStatus.CANCELED.value: "[CANCEL]",
        }
    return {
        OperationStatus.SUCCESS.value: "✅",
        OperationStatus.FAILED.value: "❌",
        OperationStatus.SKIPPED.value: "⏭️ ",
        OperationStatus.CANCELED.value: "⛔",
    }


def format_value(value: Any) -> str:
    """Render one attribute value the way plans show it."""
    if isinstance(value, Unknown):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str, sort_keys=True)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _attribute_lines(op: PlanOperation) -> List[str]:
    """Attribute detail under one operation header."""
    lines = []
    kind = str(op.kind)
    if kind == OperationKind.DESTROY.value:
        for name in sorted(op.before or {}):
            lines.append(f"      - {name} = {format_value(op.before[name])}")
        return lines

    before = op.before or {}
    after = op.after or {}
    if kind == OperationKind.CREATE.value:
        for name in sorted(after):
            lines.append(f"      + {name} = {format_value(after[name])}")
        return lines

    for name in sorted(op.changed_attributes):
        old = format_value(before.get(name))
        new = format_value(after.get(name))
        suffix = "  # forces replacement" if name in op.replace_reasons else ""
        lines.append(f"      ~ {name} = {old} -> {new}{suffix}")
    return lines


def _mask(values: Dict[str, Any], sensitive: Iterable[str]) -> Dict[str, Any]:
    hidden = set(sensitive)
    return {name: (SENSITIVE if name in hidden else value) for name, value in values.items()}


def _output_lines(outputs: Dict[str, Any], sensitive: Iterable[str]) -> List[str]:
    lines = []
    for name, value in sorted(_mask(outputs, sensitive).items()):
        rendered = value if value == SENSITIVE else format_value(value)
        lines.append(f"  {name} = {rendered}")
    return lines


def format_plan(
    plan: Plan,
    sensitive_outputs: Iterable[str] = (),
    ascii_mode: Optional[bool] = None,
) -> str:
    """
    Render a plan as human-readable text.

    Args:
        plan: Plan to render
        sensitive_outputs: Output names whose values are masked
        ascii_mode: Force ASCII output (defaults to the CONVERGE_ASCII environment variable)

    Returns:
        Formatted plan text
    """
    ascii_mode = _use_ascii(ascii_mode)
    title = "CONVERGE DESTROY PLAN" if plan.destroy else "CONVERGE PLAN"
    lines = _box(title, ascii_mode=ascii_mode)

    if not plan.has_changes:
        lines.append("No changes. Infrastructure matches the configuration.")
    else:
        lines.append("Resource actions are indicated with the following symbols:")
        lines.append("  +   create")
        lines.append("  ~   update in-place")
        lines.append("  -/+ destroy and then create replacement")
        lines.append("  -   destroy")
        lines.append("")
        for op in plan.changes:
            kind = str(op.kind)
            lines.append(f"  {SYMBOLS[kind]:<3} {op.address} {VERBS[kind]}")
            lines.extend(_attribute_lines(op))
            lines.append("")

    counts = plan.summary()
    lines.append(
        f"Plan: {counts['CREATE']} to add, {counts['UPDATE']} to change, "
        f"{counts['REPLACE']} to replace, {counts['DESTROY']} to destroy."
    )

    if plan.outputs and not plan.destroy:
        lines.append("")
        lines.extend(_section("OUTPUTS"))
        lines.extend(_output_lines(plan.outputs, sensitive_outputs))

    return "\n".join(lines)


def format_apply_result(
    result: ApplyResult,
    sensitive_outputs: Iterable[str] = (),
    ascii_mode: Optional[bool] = None,
) -> str:
    """Render an apply result: per-address outcomes, then outputs."""
    ascii_mode = _use_ascii(ascii_mode)
    marks = _status_marks(ascii_mode)
    lines = _box(f"CONVERGE APPLY - {result.status}", ascii_mode=ascii_mode)

    if result.message:
        lines.append(result.message)
        lines.append("")

    for outcome in result.outcomes:
        kind = str(outcome.kind)
        line = f"  {marks[str(outcome.status)]} {SYMBOLS[kind]:<3} {outcome.address} ({kind.lower()}: {outcome.status})"
        lines.append(line)
        if outcome.error:
            lines.append(f"        {outcome.error}")

    counts = {status.value: len(result.with_status(status)) for status in OperationStatus}
    lines.append("")
    lines.append(
        f"Apply: {counts['SUCCESS']} succeeded, {counts['FAILED']} failed, "
        f"{counts['SKIPPED']} skipped, {counts['CANCELED']} canceled."
    )

    if result.outputs and result.status != RunStatus.ABORTED:
        lines.append("")
        lines.extend(_section("OUTPUTS"))
        lines.extend(_output_lines(result.outputs, sensitive_outputs))

    return "\n".join(lines)


def format_outputs(outputs: Dict[str, Any], sensitive_outputs: Iterable[str] = ()) -> str:
    """Render recorded outputs, one per line."""
    if not outputs:
        return "No outputs recorded."
    return "\n".join(line.strip() for line in _output_lines(outputs, sensitive_outputs))


def format_record(record: StateRecord) -> str:
    """Render one state record for ``converge state show``."""
    lines = [f"# {record.address}", f"identity = {format_value(record.identity)}"]
    for name in sorted(record.attributes):
        lines.append(f"{name} = {format_value(record.attributes[name])}")
    if record.dependencies:
        lines.append(f"dependencies = {format_value([str(a) for a in record.dependencies])}")
    return "\n".join(lines)
