import html
import json
import re
from typing import Any, Dict, List, Set

# Node props that carry user-visible text in editor documents.
TEXT_KEYS = ("title", "text", "content", "caption")

_TAG_REGEX = re.compile(r"<[^>]+>")
_WS_REGEX = re.compile(r"\s+")


def _clean(fragment: str) -> str:
    """Strip markup, decode entities and collapse whitespace."""
    text = _TAG_REGEX.sub(" ", fragment)
    text = html.unescape(text)
    return _WS_REGEX.sub(" ", text).strip()


def _collect_generic(value: Any, out: List[str]) -> None:
    """Depth-first walk over nested dicts/lists, collecting text props in order."""
    if isinstance(value, dict):
        for key, child in value.items():
            if key in TEXT_KEYS and isinstance(child, str):
                cleaned = _clean(child)
                if cleaned:
                    out.append(cleaned)
            else:
                _collect_generic(child, out)
    elif isinstance(value, list):
        for child in value:
            _collect_generic(child, out)


def _collect_node_map(nodes: Dict[str, Any], node_id: str, out: List[str], seen: Set[str]) -> None:
    """Walk a flat {id: node} editor map from `node_id`, following child ids in order."""
    if node_id in seen or not isinstance(nodes.get(node_id), dict):
        return
    seen.add(node_id)
    node = nodes[node_id]
    _collect_generic(node.get("props") or {}, out)
    for child_id in node.get("nodes") or []:
        _collect_node_map(nodes, child_id, out, seen)
    linked = node.get("linkedNodes") or {}
    if isinstance(linked, dict):
        for child_id in linked.values():
            _collect_node_map(nodes, child_id, out, seen)


# PUBLIC_INTERFACE
def extract_text(document: Any) -> str:
    """
    Extract plain text from a structured content document.

    Accepts:
        - a flat editor node map ({"ROOT": {"props": ..., "nodes": [...]}, ...}),
          walked from ROOT in child order;
        - any other nested dict/list structure, whose 'title', 'text', 'content'
          and 'caption' string props are collected depth-first;
        - a JSON string encoding either of the above;
        - a plain (possibly HTML) string.

    Returns:
        str: The collected text, one fragment per line. Empty if nothing was found.
    """
    if document is None:
        return ""
    if isinstance(document, str):
        try:
            parsed = json.loads(document)
        except json.JSONDecodeError:
            return _clean(document)
        if not isinstance(parsed, (dict, list)):
            return _clean(document)
        document = parsed

    fragments: List[str] = []
    if isinstance(document, dict) and isinstance(document.get("ROOT"), dict):
        _collect_node_map(document, "ROOT", fragments, set())
    else:
        _collect_generic(document, fragments)
    return "\n".join(fragments)
