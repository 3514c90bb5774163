#!/usr/bin/env python3
"""
ABOUTME: Imports one reviewer's DOCX edits into the plain-text source
ABOUTME: Tracked changes become {++ ++}/{-- --}/{~~ ~> ~~} fences, comments become {>> <<}
"""

import argparse
import sys
from pathlib import Path

from docx_extract import DocxExtractionError, extract_review
from markup_edit import convert
from markup_edit.common import format_text_preview
from utils import get_reviewer_name, print_error, print_warnings, read_text, write_text


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Import reviewer edits from a Word document as inline annotations"
    )
    parser.add_argument('docx_file', help='Reviewed Word document (.docx)')
    parser.add_argument('original', help='Plain-text source the document was generated from')
    parser.add_argument('-o', '--output',
                        help='Output file path (default: overwrite the original)')
    parser.add_argument('--author',
                        help='Reviewer name recorded on changes (default: $DOC_REVIEW_REVIEWER or "Reviewer")')
    parser.add_argument('--no-comments', action='store_true',
                        help='Import track changes only, skip comments')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what would change, do not save')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args(argv)

    original_path = Path(args.original)
    if not original_path.exists():
        print(f"Error: File not found: {args.original}", file=sys.stderr)
        return 1

    reviewer = args.author or get_reviewer_name()
    try:
        revised, comments = extract_review(args.docx_file, include_comments=not args.no_comments)
    except DocxExtractionError as e:
        print_error(
            "Cannot read reviewer document",
            str(e),
            "  1. Check the path points to a .docx file saved by Word or LibreOffice\n"
            "  2. Legacy .doc files must be re-saved as .docx first"
        )
        return 1

    original = read_text(original_path)
    print(f"Reviewer document: {args.docx_file}")
    print(f"Original: {original_path}")
    if args.verbose:
        print("-" * 50)

    result = convert(original, revised, comments=comments, reviewer=reviewer, verbose=args.verbose)

    stats = result.stats
    print("-" * 50)
    print(f"Changes: {stats['total']} "
          f"({stats['insert']} insertions, {stats['delete']} deletions, "
          f"{stats['substitute']} substitutions)")
    print(f"Comments: {stats['comment']} ({stats['unanchored']} without anchor)")
    if args.verbose:
        for change in result.changes:
            print(f"  - {change.type}: '{format_text_preview(change.original_text)}' "
                  f"-> '{format_text_preview(change.text)}'")
    print_warnings(result.warnings)

    if args.dry_run:
        print("\nDry run: nothing saved")
        return 0

    output_path = Path(args.output) if args.output else original_path
    write_text(output_path, result.annotated_text)
    print(f"\nSaved to: {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
