"""
Path queries over the raw epic document.

Expressions use the ElementTree path language, plus two XPath-style
suffixes for selecting attribute values and text:

    //task                          every task
    //task[@status='done']          tasks with an attribute value
    //task[@phase_id='1A']          tasks in one phase
    //phase[2]                      position (1-based)
    /epic/metadata/assignee         absolute, from the document root
    //epic/*                        all children of the root
    //phase/@name                   attribute values
    //phase/@*                      every attribute of every phase
    //description/text()            element text

A path starting with // searches the whole document; a single / (or no
slash) starts at the document node, whose only child is <epic>.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from agentpm.epic.errors import InvalidQuery

logger = logging.getLogger(__name__)

ELEMENT = "element"
ATTRIBUTE = "attribute"
TEXT = "text"

TEXT_SUFFIX = "/text()"
ATTRIBUTE_SUFFIX = re.compile(r"/@([A-Za-z_][\w.-]*|\*)$")

EXAMPLES = "//task, //task[@status='done'], //phase/@name, //description/text()"

# Stand-in for the document node, so //epic and /epic match the root
_DOCUMENT_TAG = "document"


@dataclass(frozen=True)
class CompiledQuery:
    expression: str
    path: str  # ElementTree path, relative to the document node
    mode: str  # ELEMENT, ATTRIBUTE or TEXT
    attribute: str | None = None  # attribute name, or "*", in ATTRIBUTE mode


@dataclass
class QueryResult:
    query: CompiledQuery
    matches: list = field(default_factory=list)

    @property
    def match_count(self) -> int:
        return len(self.matches)

    def to_dict(self) -> dict:
        return {
            "query": self.query.expression,
            "mode": self.query.mode,
            "match_count": self.match_count,
            "matches": self.matches,
        }


def _invalid(expression: str, message: str) -> InvalidQuery:
    return InvalidQuery(
        f"Invalid query '{expression}': {message}",
        suggestion=f"Examples: {EXAMPLES}",
    )


def compile_query(expression: str) -> CompiledQuery:
    """Split off any /@attr or /text() suffix and check the path.

    Raises:
        InvalidQuery: empty expression or a path ElementTree cannot compile
    """
    expression = expression.strip()
    if not expression:
        raise _invalid(expression, "expression is empty")

    path, mode, attribute = expression, ELEMENT, None
    if path.endswith(TEXT_SUFFIX):
        path, mode = path[:-len(TEXT_SUFFIX)], TEXT
    else:
        match = ATTRIBUTE_SUFFIX.search(path)
        if match:
            path, mode, attribute = path[:match.start()], ATTRIBUTE, match.group(1)

    if path.strip("/") == "":
        raise _invalid(expression, "no element path")
    if path.startswith("//"):
        path = "." + path
    elif path.startswith("/"):
        path = path[1:]

    try:
        ET.Element(_DOCUMENT_TAG).findall(path)
    except SyntaxError as e:
        raise _invalid(expression, str(e)) from None
    except KeyError as e:
        raise _invalid(expression, f"unsupported token {e}") from None

    return CompiledQuery(expression=expression, path=path, mode=mode, attribute=attribute)


def _own_text(elem: ET.Element) -> str:
    """Text directly inside the element, without its children's text."""
    return "".join([elem.text or ""] + [child.tail or "" for child in elem]).strip()


def _element_match(elem: ET.Element) -> dict:
    match = {"tag": elem.tag}
    if elem.attrib:
        match["attributes"] = dict(elem.attrib)
    match["text"] = _own_text(elem)
    children = [_element_match(child) for child in elem]
    if children:
        match["children"] = children
    return match


def _attribute_matches(elem: ET.Element, attribute: str) -> list[dict]:
    if attribute == "*":
        items = elem.attrib.items()
    elif attribute in elem.attrib:
        items = [(attribute, elem.attrib[attribute])]
    else:
        items = []
    return [{"element": elem.tag, "name": name, "value": value} for name, value in items]


def run_query(root: ET.Element, expression: str) -> QueryResult:
    """Run a path expression against an epic document root."""
    query = compile_query(expression)
    document = ET.Element(_DOCUMENT_TAG)
    document.append(root)

    result = QueryResult(query=query)
    for elem in document.findall(query.path):
        if query.mode == ATTRIBUTE:
            result.matches.extend(_attribute_matches(elem, query.attribute))
        elif query.mode == TEXT:
            text = _own_text(elem)
            if text:
                result.matches.append(text)
        else:
            result.matches.append(_element_match(elem))

    logger.debug(f"[QUERY] {expression} -> {result.match_count} matches")
    return result
