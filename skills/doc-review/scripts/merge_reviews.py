#!/usr/bin/env python3
"""
ABOUTME: Merges several reviewers' documents into one annotated source
ABOUTME: Non-conflicting edits are applied as track changes, conflicts are chosen interactively or auto
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from docx_extract import DocxExtractionError, extract_review
from markup_edit import ReviewerText, format_conflict, merge, resolve_conflict
from markup_edit.common import Conflict
from utils import print_error, print_warnings, read_text, write_text


def load_reviewer(path: Path, name: str, include_comments: bool = True) -> ReviewerText:
    """Reviewer text from a .docx (with comments) or a plain-text copy (without)."""
    if path.suffix.lower() == '.docx':
        text, comments = extract_review(str(path), include_comments=include_comments)
        return ReviewerText(name=name, text=text, comments=comments)
    return ReviewerText(name=name, text=read_text(path))


def reviewer_names(paths: List[Path], names: Optional[str]) -> List[str]:
    """
    Names for each reviewer file.

    Explicit comma-separated names win; otherwise the file stem is used.

    Raises:
        ValueError: when the name count does not match the file count
    """
    if not names:
        return [p.stem for p in paths]
    parsed = [n.strip() for n in names.split(',')]
    if len(parsed) != len(paths) or not all(parsed):
        raise ValueError(f"--names lists {len(parsed)} name(s) for {len(paths)} reviewer file(s)")
    return parsed


def prompt_choice(conflict: Conflict, original: str, input_func=None) -> Optional[int]:
    """
    Ask which change wins a conflict.

    Returns:
        Index into conflict.choices, or None to keep the original text
    """
    read = input_func or input
    print(format_conflict(conflict, original))
    count = len(conflict.choices)
    while True:
        try:
            answer = read(f"  Choose [1-{count}, s=skip]: ").strip().lower()
        except EOFError:
            return None
        if answer in ('s', 'skip', ''):
            return None
        if answer.isdigit() and 1 <= int(answer) <= count:
            return int(answer) - 1
        print(f"  Please enter a number between 1 and {count}, or 's'")


def main(argv=None, input_func=None) -> int:
    parser = argparse.ArgumentParser(
        description="Merge multiple reviewers' documents against one original"
    )
    parser.add_argument('original', help='Plain-text source all reviewers started from')
    parser.add_argument('reviews', nargs='+', help='Reviewer documents (.docx, or plain text)')
    parser.add_argument('-o', '--output',
                        help='Output file path (default: overwrite the original)')
    parser.add_argument('--names',
                        help='Comma-separated reviewer names (default: file names)')
    parser.add_argument('--auto', action='store_true',
                        help='Resolve conflicts automatically (first reviewer wins)')
    parser.add_argument('--no-comments', action='store_true',
                        help='Skip comments from .docx reviews')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show merge summary, do not save')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args(argv)

    original_path = Path(args.original)
    review_paths = [Path(p) for p in args.reviews]
    for path in [original_path] + review_paths:
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            return 1

    try:
        names = reviewer_names(review_paths, args.names)
        reviewers = [load_reviewer(path, name, include_comments=not args.no_comments)
                     for path, name in zip(review_paths, names)]
    except DocxExtractionError as e:
        print_error(
            "Cannot read reviewer document",
            str(e),
            "  1. Check every review path points to a .docx file\n"
            "  2. Legacy .doc files must be re-saved as .docx first"
        )
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    original = read_text(original_path)
    print(f"Original: {original_path}")
    print(f"Reviewers: {', '.join(names)}")
    if args.verbose:
        print("-" * 50)

    result = merge(original, reviewers, auto=args.auto, verbose=args.verbose)
    stats = result.stats
    print("-" * 50)
    print(f"Changes: {stats['total_changes']} total, {stats['non_conflicting']} applied, "
          f"{stats['agreed']} duplicate(s) agreed, {stats['conflicts']} conflict(s)")
    print(f"Comments: {stats['comments']} ({stats['unanchored']} without anchor)")
    print_warnings(result.warnings)

    merged = result.merged_text
    if result.conflicts and args.auto:
        print(f"Auto-resolved {len(result.conflicts)} conflict(s): first reviewer wins")
    elif result.conflicts and not args.dry_run:
        print(f"\nResolving {len(result.conflicts)} conflict(s):")
        for number, conflict in enumerate(result.conflicts, 1):
            print(f"\nConflict {number}/{len(result.conflicts)}")
            choice = prompt_choice(conflict, original, input_func=input_func)
            merged = resolve_conflict(merged, conflict, choice, original)
    elif result.conflicts:
        for conflict in result.conflicts:
            print(format_conflict(conflict, original))

    if args.dry_run:
        print("\nDry run: nothing saved")
        return 0

    output_path = Path(args.output) if args.output else original_path
    write_text(output_path, merged)
    print(f"\nSaved to: {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
