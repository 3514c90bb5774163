"""
markup_edit - inline annotation engine for review round-trips

Parses, edits and generates CriticMarkup-style fences:
    {++inserted++}  {--deleted--}  {~~old~>new~~}  {>>Author: comment<<}
"""

from .common import (
    COMMENT,
    DELETE,
    INSERT,
    SUBSTITUTE,
    Annotation,
    Change,
    Conflict,
    ConvertResult,
    InvalidTargetError,
    MergeResult,
    ReviewComment,
    ReviewerText,
)
from .annotations import (
    count_annotations,
    filter_annotations,
    get_comments,
    get_track_changes,
    parse,
    strip,
    text_view,
)
from .decisions import (
    accept_all,
    add_reply,
    apply_decision,
    cleanup_annotations,
    reject_all,
    resolve_all,
    set_status,
)
from .diff_convert import anchor_comments, convert, diff_changes, extract_visible_comments
from .merge import (
    find_conflicts,
    format_conflict,
    merge,
    resolve_all_conflicts,
    resolve_conflict,
)
from .session import DocumentSession, Snapshot

__all__ = [
    'INSERT', 'DELETE', 'SUBSTITUTE', 'COMMENT',
    'Annotation', 'Change', 'Conflict', 'ConvertResult', 'MergeResult',
    'ReviewComment', 'ReviewerText', 'InvalidTargetError',
    'parse', 'strip', 'count_annotations', 'filter_annotations',
    'get_comments', 'get_track_changes', 'text_view',
    'set_status', 'apply_decision', 'add_reply',
    'accept_all', 'reject_all', 'resolve_all', 'cleanup_annotations',
    'convert', 'diff_changes', 'anchor_comments', 'extract_visible_comments',
    'merge', 'resolve_conflict', 'resolve_all_conflicts', 'find_conflicts', 'format_conflict',
    'DocumentSession', 'Snapshot',
]
