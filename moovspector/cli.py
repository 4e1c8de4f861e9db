# moovspector/cli.py
# !/usr/env/bin python3

"""
cli.py
~~~~~~~~~~~~~~~

This module provides the command-line interface for the moovspector library.
"""

import argparse
import json
import logging
import sys
import os

from .inspector import MediaInspector, SECTIONS
from ._exceptions import MoovspectorError


def check_source_path(path):
    """Custom type function for argparse to validate that a path is a file."""
    if not os.path.isfile(path):
        raise argparse.ArgumentTypeError(
            f"The path '{path}' does not exist or is not a file."
        )
    return path


def inspect(args):
    """Handles the 'inspect' subcommand."""
    try:
        inspector = MediaInspector(args.filepath)
        metadata = inspector.inspect(
            section=args.section, include_timeline=args.timeline
        )
        print(json.dumps(metadata, indent=2, ensure_ascii=False))
    except (
            MoovspectorError,
            FileNotFoundError,
            ValueError,
            IOError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def main(argv=None):
    """Defines the command-line entry point for the tool."""
    parser = argparse.ArgumentParser(
        description="Inspect the movie structure of MP4 / ISO Base Media files.",
        epilog="Use 'moovspector <command> --help' for more information on a specific command.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log box-level parsing details to stderr.",
    )

    subparsers = parser.add_subparsers(
        dest="command", required=True, help="Available commands"
    )

    # --- Parser for the 'inspect' command ---
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Inspect an MP4 file and print its summary and tracks as JSON.",
        epilog=(
            "Example: moovspector inspect /path/to/my_video.mp4\n"
            "Example: moovspector inspect clip.mp4 --section tracks --timeline"
        ),
    )
    inspect_parser.add_argument(
        "filepath",
        type=check_source_path,
        help="The full path to the media file to inspect.",
    )
    inspect_parser.add_argument(
        "--section",
        choices=SECTIONS,
        help="Optional: Specify a section to output (e.g., 'summary', 'tracks').",
    )
    inspect_parser.add_argument(
        "--timeline",
        action="store_true",
        help="Include per-sample DTS/PTS arrays in the track output.",
    )
    inspect_parser.set_defaults(func=inspect)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if hasattr(args, "func"):
        args.func(args)


if __name__ == "__main__":
    main()
