"""Report generation utilities for assembled context bundles."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

from threadsense.models import AssembledContext, FeedbackResult, NodeStatus


def render_markdown_report(context: AssembledContext) -> str:
    status_counts = Counter(status.value for status in context.node_statuses.values())
    lines: list[str] = []
    lines.append("# Threadsense Context Report")
    lines.append("")
    lines.append(f"- Root: {context.root}")
    if context.question:
        lines.append(f"- Question: {context.question}")
        lines.append(f"- Question signal: {context.question_score:.3f}")
    lines.append(f"- Nodes: {len(context.node_statuses)}")
    if status_counts:
        summary = ", ".join(f"{status}={count}" for status, count in sorted(status_counts.items()))
        lines.append(f"- Node states: {summary}")
    lines.append(f"- Blocks: {len(context.blocks)}")
    lines.append(f"- Tokens: {context.token_count}")
    lines.append("")

    errored = sorted(key for key, status in context.node_statuses.items() if status == NodeStatus.ERROR)
    if errored:
        lines.append("## Unreachable")
        lines.append("")
        for key in errored:
            lines.append(f"- {key}")
        lines.append("")

    lines.append("## Relevant Comments")
    lines.append("")
    if context.relevant_comments:
        for line in context.relevant_comments:
            lines.append(f"- {line}")
    else:
        lines.append("_No comments cleared the relevance threshold._")
    lines.append("")

    lines.append("## Context")
    lines.append("")
    lines.append("".join(block.text for block in context.blocks).rstrip("\n"))
    return "\n".join(lines)


def render_feedback_summary(result: FeedbackResult) -> str:
    if not result.changed:
        return f"No change detected for comment {result.comment_id} on {result.key}"
    lines = [f"Feedback for comment {result.comment_id} on {result.key}"]
    for span in result.spans:
        lines.append(f"- {span.kind.value}: {span.text}")
    for adjustment in result.adjustments:
        lines.append(
            f"  {adjustment.phrase_type.value} {adjustment.phrase!r}: {adjustment.before:g} -> {adjustment.after:g}"
        )
    return "\n".join(lines)


def write_context_bundle(context: AssembledContext, output_dir: str | Path) -> None:
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    (out / "context.json").write_text(context.model_dump_json(indent=2))
    (out / "context.md").write_text(render_markdown_report(context))
    (out / "node_statuses.json").write_text(
        json.dumps({key: status.value for key, status in context.node_statuses.items()}, indent=2)
    )
