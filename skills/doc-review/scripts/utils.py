#!/usr/bin/env python3
"""
ABOUTME: Shared configuration and console helpers for doc-review scripts
ABOUTME: Environment defaults, friendly error banners, text file I/O
"""

import getpass
import os
import sys
from pathlib import Path

DEFAULT_REVIEWER = 'Reviewer'
DEFAULT_UNDO_LIMIT = 50


def get_user_name() -> str:
    """
    Author name used for replies written by the document owner.

    Environment variables:
    - DOC_REVIEW_AUTHOR: Explicit author name
    Falls back to the login name, then "Anonymous".

    Returns:
        Author name
    """
    name = os.getenv("DOC_REVIEW_AUTHOR", "").strip()
    if name:
        return name
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "Anonymous"


def get_reviewer_name() -> str:
    """Default reviewer name for imported changes (DOC_REVIEW_REVIEWER)."""
    return os.getenv("DOC_REVIEW_REVIEWER", "").strip() or DEFAULT_REVIEWER


def get_undo_limit() -> int:
    """
    Maximum number of snapshots kept by an interactive review session.

    Environment variables:
    - DOC_REVIEW_UNDO_LIMIT: Positive integer (default: 50)

    Raises:
        ValueError: If the variable is set but not a positive integer
    """
    raw = os.getenv("DOC_REVIEW_UNDO_LIMIT", "").strip()
    if not raw:
        return DEFAULT_UNDO_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ValueError(f"DOC_REVIEW_UNDO_LIMIT must be an integer, got '{raw}'")
    if limit < 1:
        raise ValueError(f"DOC_REVIEW_UNDO_LIMIT must be at least 1, got {limit}")
    return limit


def print_error(title: str, details: str, solution: str):
    """
    Print a friendly, formatted error message.

    Args:
        title: Error title
        details: Detailed error information
        solution: Suggested solution steps
    """
    print("\n" + "=" * 80, file=sys.stderr)
    print(f"ERROR: {title}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    print(f"\n{details}", file=sys.stderr)
    print("\nSOLUTION:", file=sys.stderr)
    print(solution, file=sys.stderr)
    print("\n" + "=" * 80 + "\n", file=sys.stderr)


def print_warnings(warnings, limit: int = 20):
    """Print non-fatal warnings to stderr, truncating long lists."""
    for warning in warnings[:limit]:
        print(f"Warning: {warning}", file=sys.stderr)
    if len(warnings) > limit:
        print(f"Warning: ... and {len(warnings) - limit} more", file=sys.stderr)


def read_text(path) -> str:
    """Read a UTF-8 text document (a leading BOM is dropped)."""
    return Path(path).read_text(encoding='utf-8-sig')


def write_text(path, text: str):
    """Write a UTF-8 text document, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding='utf-8')
