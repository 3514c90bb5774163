#!/usr/bin/env python3
"""
ABOUTME: Shared constants, data classes and errors for the annotation engine
ABOUTME: Fence delimiters, Annotation/Change/Conflict records, preview helpers
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# ============================================================
# Constants
# ============================================================

INSERT = 'insert'
DELETE = 'delete'
SUBSTITUTE = 'substitute'
COMMENT = 'comment'

ANNOTATION_KINDS = (INSERT, DELETE, SUBSTITUTE, COMMENT)
TRACK_CHANGE_KINDS = (INSERT, DELETE, SUBSTITUTE)

# kind -> (opening marker, closing marker)
FENCES: Dict[str, Tuple[str, str]] = {
    INSERT: ('{++', '++}'),
    DELETE: ('{--', '--}'),
    SUBSTITUTE: ('{~~', '~~}'),
    COMMENT: ('{>>', '<<}'),
}

# Opening marker -> kind, used by the scanner
OPENERS: Dict[str, str] = {opener: kind for kind, (opener, _) in FENCES.items()}

SUBSTITUTE_SEPARATOR = '~>'

# Resolved comments carry this glyph right after the opening marker
RESOLVED_MARK = '✓'

DEFAULT_AUTHOR = 'Anonymous'

# Characters of preceding plain text kept on each Annotation
CONTEXT_CHARS = 50


# ============================================================
# Errors
# ============================================================

class InvalidTargetError(ValueError):
    """Operation target does not exist (or no longer exists) in the text.

    Raised before any mutation, so the caller's text is untouched.
    """

    def __init__(self, message: str, valid: Optional[str] = None):
        self.valid = valid
        if valid:
            message = f"{message}\nValid targets: {valid}"
        super().__init__(message)


# ============================================================
# Data Classes
# ============================================================

@dataclass
class Annotation:
    """One fenced markup unit found in a specific text snapshot"""
    kind: str                          # insert | delete | substitute | comment
    content: str                       # inserted/deleted text, old half, or comment body
    position: int                      # offset of the opening marker
    markup: str                        # exact fence text as matched
    line: int = 1                      # 1-based line of position (display only)
    replacement: Optional[str] = None  # new half (substitute only)
    author: Optional[str] = None       # comment author, None if unattributed
    resolved: bool = False             # comment only
    before: str = ''                   # trailing plain text preceding the fence
    reply_to: Optional[int] = None     # position of the thread root for replies

    @property
    def end(self) -> int:
        return self.position + len(self.markup)

    @property
    def display_author(self) -> str:
        return self.author or DEFAULT_AUTHOR

    @property
    def is_reply(self) -> bool:
        return self.reply_to is not None

    @property
    def is_track_change(self) -> bool:
        return self.kind in TRACK_CHANGE_KINDS


@dataclass
class ReviewComment:
    """Comment extracted from a reviewer's document, not yet anchored"""
    author: str
    text: str
    anchor: str = ''                    # text the comment was attached to
    before: str = ''                    # context preceding the anchor
    after: str = ''                     # context following the anchor
    comment_id: str = ''
    date: str = ''
    resolved: bool = False
    doc_position: Optional[int] = None  # anchor offset in the extracted text
    doc_length: Optional[int] = None    # length of the extracted text
    page: Optional[int] = None


@dataclass
class ReviewerText:
    """One reviewer's extracted document, ready to merge"""
    name: str
    text: str
    comments: List[ReviewComment] = field(default_factory=list)


@dataclass
class Change:
    """Classified diff hunk over the original text's coordinates"""
    type: str                 # insert | delete | substitute
    start: int                # original range start
    end: int                  # original range end (exclusive), == start for inserts
    text: str = ''            # revised text ('' for deletions)
    reviewer: str = ''
    original_text: str = ''   # original[start:end]

    def same_edit(self, other: 'Change') -> bool:
        """True when both changes make the identical edit, regardless of reviewer"""
        return (self.start, self.end, self.text) == (other.start, other.end, other.text)


@dataclass
class Conflict:
    """Overlapping changes from different reviewers awaiting one choice.

    Each choice is the complete set of one reviewer's changes inside the
    conflicting range, so picking a reviewer applies all of their edits
    there and discards everyone else's.
    """
    choices: List[List[Change]]   # one list per reviewer, in reviewer order
    start: int
    end: int

    @property
    def changes(self) -> List[Change]:
        return [change for choice in self.choices for change in choice]

    @property
    def reviewers(self) -> List[str]:
        return [choice[0].reviewer for choice in self.choices]


@dataclass
class ConvertResult:
    """Result of converting one reviewer document into annotations"""
    annotated_text: str
    changes: List[Change] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


@dataclass
class MergeResult:
    """Result of merging several reviewers against one original"""
    merged_text: str
    original_text: str
    conflicts: List[Conflict] = field(default_factory=list)
    changes: List[Change] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


# ============================================================
# Helper Functions
# ============================================================

def format_text_preview(text: str, max_len: int = 30) -> str:
    """
    Format text for log output: remove newlines and truncate.

    Args:
        text: Text to format
        max_len: Maximum length before truncation

    Returns:
        Clean, truncated text with "..." suffix if truncated
    """
    clean = text.replace('\n', ' ').replace('\r', '').replace('\t', ' ')
    while '  ' in clean:
        clean = clean.replace('  ', ' ')
    clean = clean.strip()
    if len(clean) > max_len:
        return clean[:max_len] + "..."
    return clean


def render_change_markup(kind: str, content: str, replacement: Optional[str] = None) -> str:
    """
    Render a track change as its inline fence.

    Args:
        kind: insert | delete | substitute
        content: Inserted/deleted text, or the old half of a substitution
        replacement: New half of a substitution

    Returns:
        Fenced markup string
    """
    opener, closer = FENCES[kind]
    if kind == SUBSTITUTE:
        return f"{opener}{content}{SUBSTITUTE_SEPARATOR}{replacement or ''}{closer}"
    return f"{opener}{content}{closer}"


def escape_markers(text: str) -> str:
    """
    Break up fence markers so the text can sit inside a comment body.

    Example:
        "use {++ and <<}" -> "use { ++ and << }"
    """
    for opener in OPENERS:
        text = text.replace(opener, f"{opener[0]} {opener[1:]}")
    return text.replace('<<}', '<< }')


def render_comment_markup(author: Optional[str], message: str, resolved: bool = False) -> str:
    """
    Render a comment fence.

    No fence marker survives inside the body, and line breaks are folded so
    the fence stays on one line.
    """
    body = ' '.join(escape_markers(message).split())
    prefix = f"{RESOLVED_MARK} " if resolved else ''
    if author:
        return f"{{>>{prefix}{escape_markers(author)}: {body}<<}}"
    return f"{{>>{prefix}{body}<<}}"
