import argparse
from typing import Dict, Iterable, List

from figma_atomic.common.utils import ProgressLogger, read_jsonl, save_jsonl
from schemas import ComponentGroup, ElementRecord

MODULE_ID = "group_components_v1"


def group_by_category(elements: Iterable[ElementRecord]) -> List[ComponentGroup]:
    """
    Collapse elements into one group per category, in first-seen order.

    The first element seen for a category is its representative; later ones are only
    appended to ``instances``. This is a fixed order-dependent policy, not a quality pick.
    """
    grouped: Dict[str, List[ElementRecord]] = {}
    for element in elements:
        grouped.setdefault(element.category, []).append(element)
    return [ComponentGroup(category=category, representative=instances[0], instances=instances)
            for category, instances in grouped.items()]


def deferred_instances(group: ComponentGroup) -> List[ElementRecord]:
    return [e for e in group.instances if e.id != group.representative.id]


def main():
    parser = argparse.ArgumentParser(description="Group discovered elements by category, first-seen representative.")
    parser.add_argument("--input", required=True, help="elements.jsonl")
    parser.add_argument("--out", required=True, help="groups.jsonl")
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    elements = [ElementRecord(**row) for row in read_jsonl(args.input)]
    groups = group_by_category(elements)
    save_jsonl(args.out, [g.model_dump() for g in groups])
    logger.log("group_components", "done", current=len(groups), total=len(elements),
               message=f"{len(elements)} elements -> {len(groups)} groups", artifact=args.out, module_id=MODULE_ID)
    print(f"Grouped {len(elements)} elements into {len(groups)} groups → {args.out}")


if __name__ == "__main__":
    main()
