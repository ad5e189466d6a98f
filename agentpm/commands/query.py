"""
agentpm query - Run a path expression over the epic document.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.docquery import ATTRIBUTE, TEXT, compile_query, run_query
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output

# Longest element text shown in the text format
_TEXT_PREVIEW = 50


def _preview(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= _TEXT_PREVIEW else text[:_TEXT_PREVIEW - 3] + "..."


def _element_line(match: dict) -> str:
    attrs = ", ".join(f"{k}={v}" for k, v in match.get("attributes", {}).items())
    return escape(f"{match['tag']}[{attrs}]")


def _query_lines(data: dict) -> list[str]:
    noun = "match" if data["match_count"] == 1 else "matches"
    lines = [
        f"Query: {escape(data['query'])}",
        f"Found {data['match_count']} {noun}",
    ]
    if not data["matches"]:
        lines.append("[dim]No matches found.[/dim]")
        return lines

    lines.append("")
    for match in data["matches"]:
        if data["mode"] == ATTRIBUTE:
            lines.append(f"  {escape(match['element'])}@{escape(match['name'])} = {escape(match['value'])}")
        elif data["mode"] == TEXT:
            lines.append(f"  {escape(match)}")
        else:
            lines.append(f"  {_element_line(match)}")
            if match["text"]:
                lines.append(f"    {escape(_preview(match['text']))}")
    return lines


def cmd_query(args, epic_path: Path, out: Output) -> int:
    """Print the elements, attributes or text an expression selects."""
    compile_query(args.expression)  # bad syntax is reported before the file is read
    root = store.load_document(epic_path)
    result = run_query(root, args.expression)
    data = {"epic_file": str(epic_path), **result.to_dict()}
    out.emit("query_result", data, _query_lines)
    return EXIT_OK
