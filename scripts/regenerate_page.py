"""
Utility script to redraw a single page of a persisted storybook.

Usage:
    python scripts/regenerate_page.py \
        --storybook-id 3f2c... \
        --page 2 \
        --requester-id user-123

Environment variables:
    REPLICATE_API_TOKEN  - required unless you pass --api-token
    OPENAI_API_KEY       - key for the story model (or LITELLM_API_KEY)
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from taleweaver import StorybookOrchestrator, TaleWeaverError
from taleweaver.ai_generation import ReplicateIllustrator
from taleweaver.storage import LocalAssetPublisher, YamlStorybookRepository


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Regenerate the text and illustration of one storybook page."
    )
    parser.add_argument("--storybook-id", required=True, help="Id of the persisted storybook.")
    parser.add_argument("--page", type=int, required=True, help="Page number to regenerate.")
    parser.add_argument(
        "--requester-id",
        default=None,
        help="User asking for the change; must own the storybook if it has an owner.",
    )
    parser.add_argument("--asset-dir", default="generated", help="Published illustration directory.")
    parser.add_argument("--library-dir", default="library", help="Storybook YAML directory.")
    parser.add_argument(
        "--api-token",
        default=None,
        help="Optional Replicate API token override (otherwise uses environment variable).",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Optional Replicate model identifier override (owner/model[:version]).",
    )
    return parser.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)

    illustrator = ReplicateIllustrator(api_token=args.api_token, model_identifier=args.model)
    print("Regenerating page with the following parameters:")
    print(f"  Storybook: {args.storybook_id}")
    print(f"  Page     : {args.page}")
    print(f"  Model    : {illustrator.model_identifier}")

    with StorybookOrchestrator(
        illustrator=illustrator,
        publisher=LocalAssetPublisher(args.asset_dir),
        repository=YamlStorybookRepository(args.library_dir),
        max_workers=1,
    ) as orchestrator:
        try:
            page = orchestrator.regenerate_page(
                args.storybook_id,
                args.page,
                requester_id=args.requester_id,
            )
        except TaleWeaverError as exc:
            print(f"Regeneration failed: {exc}", file=sys.stderr)
            return 1

    print("\nUpdated page:")
    print(f"  Image : {page.image_url}")
    print(f"  Text  : {page.text}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
