import os
import re
from typing import FrozenSet, Iterable, Optional

# `- \`button\`` bullet lines; anything after the name (descriptions) is ignored
ALLOW_LIST_LINE_RE = re.compile(r"^\s*[-*]\s+`([A-Za-z0-9_-]+)`")

DEFAULT_ALLOW_LIST = frozenset({
    "accordion", "alert", "avatar", "badge", "breadcrumb", "button", "card", "checkbox",
    "dialog", "dropdown-menu", "input", "label", "navigation-menu", "pagination", "popover",
    "progress", "radio-group", "select", "separator", "skeleton", "slider", "switch",
    "table", "tabs", "textarea", "toast", "toggle", "tooltip",
})

DEFAULT_ALLOW_LIST_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
    "configs", "allowed_components.md",
)


def parse_allow_list(lines: Iterable[str]) -> FrozenSet[str]:
    names = set()
    for line in lines:
        match = ALLOW_LIST_LINE_RE.match(line)
        if match:
            names.add(match.group(1).strip())
    return frozenset(names)


def load_allow_list(path: Optional[str] = None) -> FrozenSet[str]:
    """
    Load the set of element categories the generator knows how to render.

    Falls back to DEFAULT_ALLOW_LIST when the file is missing or lists nothing.
    """
    path = path or DEFAULT_ALLOW_LIST_PATH
    if not os.path.exists(path):
        print(f"[allow-list] {path} not found; using built-in list")
        return DEFAULT_ALLOW_LIST
    with open(path, "r", encoding="utf-8") as f:
        names = parse_allow_list(f)
    if not names:
        print(f"[allow-list] no entries in {path}; using built-in list")
        return DEFAULT_ALLOW_LIST
    return names
