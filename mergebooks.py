#!/usr/bin/env python3
from __future__ import annotations

import argparse
import dataclasses
import json
import sys
import tempfile
from pathlib import Path

from quire.config import configure_logging, load_settings
from quire.errors import ArchiveWriteError, MergeError
from quire.merge import merge_job
from quire.models import JobConfiguration, JobOptionsError, job_config_from_dict
from quire.packager import write_archive
from quire.storage import new_job_id


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Merge several EPUB files into one book with a regenerated table of contents."
    )
    parser.add_argument("inputs", nargs="+", help="Input EPUB files, in merge order")
    parser.add_argument("-o", "--output", help="Output EPUB file path")
    parser.add_argument("--options", help="JSON file with chapterFormat/nonChapterXHTML/replacements/outputName")
    parser.add_argument(
        "--chapter",
        action="append",
        default=[],
        help="Chapter file name pattern (repeatable, first match wins)",
    )
    parser.add_argument("--title", help="Title of the merged book")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> JobConfiguration:
    data: dict = {}
    if args.options:
        data = json.loads(Path(args.options).read_text(encoding="utf-8"))
    config = job_config_from_dict(data)
    if args.chapter:
        config.chapter_formats = list(dict.fromkeys([*config.chapter_formats, *args.chapter]))
    if args.title:
        config.output_name = args.title
    return config


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    configure_logging()
    input_paths = [Path(raw) for raw in args.inputs]
    missing = [path for path in input_paths if not path.exists()]
    if missing:
        print(f"Input file not found: {missing[0]}", file=sys.stderr)
        return 1

    try:
        config = load_config(args)
    except (OSError, json.JSONDecodeError, JobOptionsError) as exc:
        print(f"Invalid options: {exc}", file=sys.stderr)
        return 1

    output_path = Path(args.output) if args.output else input_paths[0].with_name(f"{input_paths[0].stem}-merged.epub")
    archives = [path.read_bytes() for path in input_paths]
    with tempfile.TemporaryDirectory(prefix="quire-") as tmp:
        settings = dataclasses.replace(load_settings(), work_dir=Path(tmp))
        try:
            data = merge_job(new_job_id(input_paths[0].name), archives, config, settings=settings)
        except MergeError as exc:
            print(f"Merge failed: {exc}", file=sys.stderr)
            return 1

    try:
        write_archive(output_path, data)
    except ArchiveWriteError as exc:
        print(f"Cannot write output: {exc}", file=sys.stderr)
        return 1
    print(f"EPUB saved to: {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
