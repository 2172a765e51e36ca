#!/usr/bin/env python3
"""
Preview the approval chain a request would get.

Usage:
    python scripts/preview_chain.py <requester> <category> [--department D] [--config PATH]
    python scripts/preview_chain.py --list-categories

<requester> is an email or a full name from the directory.  Unknown
requesters get the fallback chain for --department.

Examples:
    python scripts/preview_chain.py field.tech@acme.example leave
    python scripts/preview_chain.py "Samuel Ekwe" invoice
    python scripts/preview_chain.py newhire@acme.example leave --department IT
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import build_chain_builder, load_workflow_config
from approval_engines.chain_builder import ChainPreview
from approval_kernel.exceptions import ApprovalKernelError


def render_preview(preview: ChainPreview) -> str:
    lines = [
        f"Requester: {preview.requester}",
        f"Category:  {preview.category}",
    ]
    if preview.used_fallback:
        lines.append("Note:      requester not in directory, fallback chain used")
    lines.append("")
    for step in preview.steps:
        lines.append(
            f"  {step.level}. {step.approver.name:<24} {step.approver.email:<36} {step.role}"
        )
    lines.append("")
    lines.append(
        f"{preview.total_steps} approval level(s), "
        f"estimated {preview.estimated_hours}h ({preview.display_text})"
    )
    return "\n".join(lines)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Preview the approval chain for a requester and category.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("requester", nargs="?", help="Requester email or full name")
    parser.add_argument("category", nargs="?", help="Request category, e.g. leave")
    parser.add_argument(
        "--department",
        default=None,
        help="Department hint for requesters not in the directory",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Workflow configuration YAML (default: approval_config/sets/default.yaml)",
    )
    parser.add_argument(
        "--list-categories",
        action="store_true",
        help="List the configured request categories and exit",
    )
    args = parser.parse_args(argv)

    config = load_workflow_config(args.config)
    builder = build_chain_builder(config)

    if args.list_categories:
        for category in builder.categories():
            recipe = builder.recipe_for(category)
            print(f"{category:<16} {recipe.description}")
        return 0

    if not args.requester or not args.category:
        parser.error("requester and category are required")

    try:
        preview = builder.preview(args.requester, args.category, args.department)
    except ApprovalKernelError as exc:
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    print(render_preview(preview))
    return 0


if __name__ == "__main__":
    sys.exit(main())
