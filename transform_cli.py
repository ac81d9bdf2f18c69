#!/usr/bin/env python3
"""CLI for creating a catalog product with an optionally AI-enhanced image.

Usage:
    python transform_cli.py --image mug.jpg --name "Mug" --description "Stoneware" --price 12.5 --stock 10
    python transform_cli.py --image mug.jpg --preset "Studio look" --name "Mug" --description "..." --price 12.5
"""

from __future__ import annotations

import argparse
import os
import sys

from dotenv import load_dotenv

load_dotenv()

import log_setup
log_setup.configure(os.environ.get("LOG_LEVEL", "WARNING"), log_file=False)

import prompts
from transform_client import (
    FormError,
    ProductDraft,
    ProductImageController,
    SelectedImage,
    StoreApi,
)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Create a catalog product, optionally enhancing its image with AI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python transform_cli.py --image mug.jpg --name Mug --description "Stoneware mug" --price 12.5 --stock 10
  python transform_cli.py --image mug.jpg --preset "Studio look" --name Mug --description "..." --price 12.5
  python transform_cli.py --image ebook.png --no-transform --digital --name "E-book" --description "..." --price 5
""",
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("STORE_BASE_URL", "http://localhost:5000"),
        help="Store server URL (default: $STORE_BASE_URL or http://localhost:5000)",
    )
    parser.add_argument("--image", default=None, help="Path to the product image")
    parser.add_argument("--prompt", default=None, help="Custom editing prompt")
    parser.add_argument(
        "--preset",
        choices=[p["label"] for p in prompts.PRESET_PROMPTS],
        default=None,
        help="Use one of the preset editing prompts",
    )
    parser.add_argument("--no-transform", action="store_true", help="Upload the original image as-is")
    parser.add_argument("--name", default=None, help="Product name")
    parser.add_argument("--description", default=None, help="Product description")
    parser.add_argument("--price", type=float, default=None, help="Product price")
    parser.add_argument("--stock", type=int, default=0, help="Units in stock (ignored for digital products)")
    parser.add_argument("--digital", action="store_true", help="Mark the product as digital")
    parser.add_argument("--transform-only", action="store_true", help="Transform the image and exit without creating a product")
    parser.add_argument("--list-presets", action="store_true", help="List preset prompts and exit")

    args = parser.parse_args(argv)

    if args.list_presets:
        _list_presets()
        return 0

    if args.prompt and args.preset:
        parser.error("--prompt and --preset are mutually exclusive")
    if not args.transform_only:
        for flag in ("name", "description", "price"):
            if getattr(args, flag) is None:
                parser.error(f"--{flag} is required")
    if args.transform_only and (args.no_transform or not args.image):
        parser.error("--transform-only needs --image and cannot be combined with --no-transform")

    controller = ProductImageController(StoreApi(args.base_url))

    if args.image:
        try:
            image = SelectedImage.from_path(args.image)
        except OSError as exc:
            print(f"✗  Cannot read image: {exc}", file=sys.stderr)
            return 2
        controller.select_image(image)
        _echo(f"  ◌ Selected {image.filename} ({image.mime_type}, {image.size} bytes)")

    if args.preset:
        controller.apply_preset(args.preset)
    elif args.prompt is not None:
        controller.set_prompt(args.prompt)

    if args.image and not args.no_transform:
        _echo("  ◌ Transforming with AI…")
        result = controller.request_transform()
        if result is None:
            print(f"  ✗ {controller.transform_error}", file=sys.stderr)
            return 1
        _echo(f"  ✓ Transformed image: {result.path}")

    if args.transform_only:
        return 0

    draft = ProductDraft(
        name=args.name.strip(),
        description=args.description.strip(),
        price=args.price,
        stock=args.stock,
        is_digital=args.digital,
    )
    try:
        controller.submit_product(draft)
    except FormError as exc:
        print(f"  ✗ {exc.message}", file=sys.stderr)
        return 1

    _echo(f"  ✓ Product '{draft.name}' created")
    return 0


def _list_presets() -> None:
    print("\nPreset Prompts")
    print("─" * 40)
    for p in prompts.PRESET_PROMPTS:
        print(f"  {p['label']}")
        print(f"    {p['prompt']}")
    print("\nDefault")
    print("─" * 40)
    print(f"  {prompts.DEFAULT_PROMPT}\n")


def _echo(msg: str) -> None:
    print(msg, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
