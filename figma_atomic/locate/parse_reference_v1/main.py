import argparse
import os
import re
from typing import List, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from figma_atomic.common.utils import ProgressLogger, save_json
from schemas import DesignReference

MODULE_ID = "parse_reference_v1"
REFERENCE_KINDS = ("design", "file", "proto")
NODE_ID_RE = re.compile(r"^[^\s:]+:[^\s]+$")

FIGMA_TOKEN_ENV = "FIGMA_ACCESS_TOKEN"
API_KEY_ENV = "OPENAI_API_KEY"


class FatalPipelineError(Exception):
    """A precondition failure that aborts the run before any network call."""

    def __init__(self, message: str, hints: Optional[List[str]] = None):
        super().__init__(message)
        self.hints = list(hints or [])


class MissingCredentialsError(FatalPipelineError):
    pass


class InvalidReferenceError(FatalPipelineError):
    pass


REFERENCE_HINTS = [
    "Copy the link from Figma with a frame selected (Share > Copy link).",
    "Expected form: https://www.figma.com/design/<FILE_KEY>/<Name>?node-id=<X>-<Y>",
]


def parse_reference(reference: str) -> DesignReference:
    """
    Split a Figma URL into ``(file_key, node_id)``.

    ``node-id=2606-6342`` in the query becomes node id ``2606:6342``; only the first
    ``-`` is replaced. Accepts ``/design/``, ``/file/`` and ``/proto/`` links.
    """
    text = (reference or "").strip()
    if not text:
        raise InvalidReferenceError("No design reference given", REFERENCE_HINTS)
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidReferenceError(f"Not a URL: {text}", REFERENCE_HINTS)

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2 or parts[0] not in REFERENCE_KINDS:
        raise InvalidReferenceError(f"Could not find a file key in {text}", REFERENCE_HINTS)

    node_values = parse_qs(parsed.query).get("node-id") or []
    raw_node = node_values[0].strip() if node_values else ""
    if not raw_node:
        raise InvalidReferenceError(f"No node-id in {text}", REFERENCE_HINTS)
    node_id = raw_node.replace("-", ":", 1)
    if not NODE_ID_RE.match(node_id):
        raise InvalidReferenceError(f"Unrecognized node-id {raw_node!r} in {text}", REFERENCE_HINTS)
    return DesignReference(url=text, file_key=parts[1], node_id=node_id)


def resolve_credentials(figma_token: Optional[str] = None, api_key: Optional[str] = None,
                        env: Optional[Mapping[str, str]] = None) -> Tuple[str, str]:
    env = os.environ if env is None else env
    figma_token = (figma_token or env.get(FIGMA_TOKEN_ENV) or "").strip()
    api_key = (api_key or env.get(API_KEY_ENV) or "").strip()
    missing = []
    hints = []
    if not figma_token:
        missing.append("Figma access token")
        hints.append(f"Set {FIGMA_TOKEN_ENV} or pass --figma-token "
                     "(Figma > Settings > Security > Personal access tokens).")
    if not api_key:
        missing.append("completion API key")
        hints.append(f"Set {API_KEY_ENV} or pass --api-key.")
    if missing:
        raise MissingCredentialsError(f"Missing {' and '.join(missing)}", hints)
    return figma_token, api_key


def locate_reference(reference: str, figma_token: Optional[str] = None, api_key: Optional[str] = None,
                     env: Optional[Mapping[str, str]] = None,
                     logger: Optional[ProgressLogger] = None) -> Tuple[DesignReference, str, str]:
    """Check credentials, then parse the reference. Raises FatalPipelineError subclasses only."""
    if logger:
        logger.log("locate_reference", "running", message="checking credentials and reference", module_id=MODULE_ID)
    figma_token, api_key = resolve_credentials(figma_token, api_key, env)
    ref = parse_reference(reference)
    if logger:
        logger.log("locate_reference", "done", message=f"file {ref.file_key} node {ref.node_id}",
                   module_id=MODULE_ID, extra={"file_key": ref.file_key, "node_id": ref.node_id})
    return ref, figma_token, api_key


def main():
    parser = argparse.ArgumentParser(description="Parse a Figma URL into file key and node id.")
    parser.add_argument("reference", help="Figma URL with a node-id query parameter")
    parser.add_argument("--out", help="Optional JSON output path")
    args = parser.parse_args()

    try:
        ref = parse_reference(args.reference)
    except InvalidReferenceError as exc:
        raise SystemExit(f"[locate] {exc}")
    if args.out:
        save_json(args.out, ref.model_dump())
    print(f"[locate] file_key={ref.file_key} node_id={ref.node_id}")


if __name__ == "__main__":
    main()
