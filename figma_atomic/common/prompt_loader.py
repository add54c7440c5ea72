import os
from typing import Mapping

PROMPT_BODY_MARKER = "## AI Prompt"
VARIABLE_TOKEN = "{{%s}}"


class PromptTemplateError(FileNotFoundError):
    pass


def prompt_body(template: str) -> str:
    """Drop documentation prose up to and including the first ``## AI Prompt`` line."""
    lines = template.splitlines()
    for idx, line in enumerate(lines):
        if line.strip() == PROMPT_BODY_MARKER:
            return "\n".join(lines[idx + 1:]).strip()
    return template.strip()


def render_prompt(template: str, variables: Mapping[str, object]) -> str:
    # plain textual replacement: no escaping, unknown tokens left as-is
    text = prompt_body(template)
    for name, value in variables.items():
        text = text.replace(VARIABLE_TOKEN % name, "" if value is None else str(value))
    return text


def load_prompt(path: str) -> str:
    if not os.path.exists(path):
        raise PromptTemplateError(f"Prompt template not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def module_prompt(module_file: str, name: str = "prompt.md") -> str:
    """Load the template stored next to a stage's ``main.py``."""
    return load_prompt(os.path.join(os.path.dirname(os.path.abspath(module_file)), name))
