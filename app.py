"""Command line entry point for the Stamp Gallery project."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from config.settings import AppConfig, load_config
from modules.community.like_ledger import PostNotFoundError
from modules.community.ranking import ALL_CATEGORIES, SortMode
from modules.services.community_service import CommunityService
from modules.services.library_service import ImageSubmission, LibraryService
from modules.storage.medium import FileStorageMedium, StorageError
from modules.storage.quota_store import StorageExhaustedError
from modules.utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the local image library and community feed.")
    parser.add_argument("--env", dest="config_path", default=None, help="Path to a .env file.")
    sections = parser.add_subparsers(dest="section", required=True)

    library = sections.add_parser("library", help="Private image library.")
    library_cmds = library.add_subparsers(dest="command", required=True)
    library_cmds.add_parser("list", help="List saved images.")
    save = library_cmds.add_parser("save", help="Compress and save an image file.")
    save.add_argument("image", type=Path)
    save.add_argument("--prompt", default="")
    save.add_argument("--style", default=None)
    remove = library_cmds.add_parser("remove", help="Delete a saved image.")
    remove.add_argument("image_id")
    favorite = library_cmds.add_parser("favorite", help="Toggle the favorite flag.")
    favorite.add_argument("image_id")

    community = sections.add_parser("community", help="Shared community feed.")
    community_cmds = community.add_subparsers(dest="command", required=True)
    feed = community_cmds.add_parser("feed", help="Show the feed.")
    feed.add_argument("--sort", choices=[mode.value for mode in SortMode], default=SortMode.RECENT.value)
    feed.add_argument("--category", default=ALL_CATEGORIES)
    publish = community_cmds.add_parser("publish", help="Publish an image file or a library image.")
    source = publish.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", type=Path)
    source.add_argument("--library-id")
    publish.add_argument("--style", default=None)
    like = community_cmds.add_parser("like", help="Toggle your like on a post.")
    like.add_argument("post_id")
    return parser


def _run_library(args: argparse.Namespace, service: LibraryService) -> int:
    if args.command == "list":
        for image in service.list():
            star = "*" if image.is_favorite else " "
            print(f"{star} {image.id}  {image.style or '-'}  {image.size_bytes}B  {image.prompt}")
        return 0
    if args.command == "save":
        submission = ImageSubmission(image_bytes=args.image.read_bytes(), prompt=args.prompt, style=args.style)
        try:
            image = service.save(submission)
        except StorageExhaustedError as exc:
            print(exc, file=sys.stderr)
            return 1
        print(f"Saved {image.id} ({image.size_bytes} bytes)")
        return 0
    if args.command == "remove":
        try:
            service.remove(args.image_id)
        except StorageError as exc:
            print(exc, file=sys.stderr)
            return 1
        return 0
    if args.command == "favorite":
        try:
            image = service.toggle_favorite(args.image_id)
        except StorageError as exc:
            print(exc, file=sys.stderr)
            return 1
        if image is None:
            print(f"Image {args.image_id} not found", file=sys.stderr)
            return 1
        print(f"{image.id} favorite={image.is_favorite}")
        return 0
    return 2


def _run_community(args: argparse.Namespace, service: CommunityService, library: LibraryService) -> int:
    if args.command == "feed":
        sort_mode = SortMode(args.sort)
        liked = service.liked_post_ids()
        highlight = service.featured(sort_mode, args.category)
        if highlight is not None:
            print(f"Featured: {highlight.id}  {highlight.category}  likes={highlight.likes}")
        for post in service.browse(sort_mode, args.category):
            heart = "<3" if post.id in liked else "  "
            print(f"{heart} {post.id}  {post.category}  likes={post.likes}")
        return 0
    if args.command == "publish":
        if args.library_id:
            image = library.get(args.library_id)
            if image is None:
                print(f"Image {args.library_id} not found", file=sys.stderr)
                return 1
            result = service.publish_stored(image)
        else:
            result = service.publish(ImageSubmission(image_bytes=args.file.read_bytes(), style=args.style))
        print(result.message)
        return 0 if result.success else 1
    if args.command == "like":
        try:
            count = service.toggle_like(args.post_id)
        except (PostNotFoundError, StorageError) as exc:
            print(exc, file=sys.stderr)
            return 1
        state = "liked" if service.has_liked(args.post_id) else "unliked"
        print(f"{args.post_id} {state} (likes={count})")
        return 0
    return 2


def main(argv: Optional[Sequence[str]] = None, config: Optional[AppConfig] = None) -> int:
    """Parse arguments, wire the services and run one command."""
    args = build_parser().parse_args(argv)
    config = config or load_config(args.config_path)
    setup_logging(config)

    medium = FileStorageMedium(config.data_dir, capacity_bytes=config.storage_capacity_bytes)
    library = LibraryService(config, medium)
    if args.section == "library":
        return _run_library(args, library)
    return _run_community(args, CommunityService(config, medium), library)


if __name__ == "__main__":
    raise SystemExit(main())
