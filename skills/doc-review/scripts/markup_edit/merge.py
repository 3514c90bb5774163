"""
Multi-reviewer merge.

Every reviewer is diffed against the same original, so all change ranges
share one coordinate space. Overlapping ranges from different reviewers
form conflicts; everything else is applied as track-change markup.
"""

from bisect import bisect_left
from typing import Dict, List, Optional, Tuple

from .annotations import text_view
from .common import (
    Change,
    Conflict,
    InvalidTargetError,
    MergeResult,
    ReviewComment,
    ReviewerText,
    format_text_preview,
)
from .diff_convert import (
    anchor_comments,
    change_markup,
    diff_changes,
    extract_visible_comments,
    render_changes,
    splice_markup,
)


# ============================================================
# Conflict detection
# ============================================================

def ranges_overlap(a: Change, b: Change) -> bool:
    """
    Inclusive overlap of two original ranges.

    Touching ranges overlap, and a zero-length insertion overlaps any
    change that touches its point.
    """
    return a.start <= b.end and b.start <= a.end


def group_changes(changes: List[Change]) -> List[List[Change]]:
    """
    Cluster changes whose ranges overlap, transitively.

    Sweep over changes sorted by range start, extending the current group
    while the next start does not pass the group's furthest end.
    """
    ordered = sorted(changes, key=lambda c: (c.start, c.end, c.text, c.reviewer))
    groups: List[List[Change]] = []
    current: List[Change] = []
    current_end = -1
    for change in ordered:
        if current and change.start <= current_end:
            current.append(change)
            current_end = max(current_end, change.end)
        else:
            if current:
                groups.append(current)
            current = [change]
            current_end = change.end
    if current:
        groups.append(current)
    return groups


def _choices_by_reviewer(group: List[Change], reviewer_order: Dict[str, int]) -> List[List[Change]]:
    """One list of changes per reviewer, reviewers in priority order."""
    by_reviewer: Dict[str, List[Change]] = {}
    for change in sorted(group, key=lambda c: (c.start, c.end)):
        by_reviewer.setdefault(change.reviewer, []).append(change)
    names = sorted(by_reviewer, key=lambda name: (reviewer_order.get(name, len(reviewer_order)), name))
    return [by_reviewer[name] for name in names]


def _same_edits(a: List[Change], b: List[Change]) -> bool:
    return len(a) == len(b) and all(x.same_edit(y) for x, y in zip(a, b))


def _split_groups(groups: List[List[Change]],
                  reviewer_order: Dict[str, int]) -> Tuple[List[Change], List[Conflict], int]:
    """
    Separate applicable changes from conflicts.

    A group touched by one reviewer only, or in which every reviewer made
    the identical set of edits, is applied (once). Anything else is a
    conflict offering each reviewer's changes in the group as one choice.

    Returns:
        (applicable changes, conflicts, number of agreed duplicate edits)
    """
    applicable: List[Change] = []
    conflicts: List[Conflict] = []
    agreed = 0

    for group in groups:
        choices = _choices_by_reviewer(group, reviewer_order)
        if len(choices) == 1:
            applicable.extend(choices[0])
            continue
        if all(_same_edits(choices[0], other) for other in choices[1:]):
            applicable.extend(choices[0])
            agreed += sum(len(other) for other in choices[1:])
            continue
        conflicts.append(Conflict(
            choices=choices,
            start=min(c.start for c in group),
            end=max(c.end for c in group),
        ))
    return applicable, conflicts, agreed


def find_conflicts(changes: List[Change], reviewer_order: Optional[List[str]] = None) -> List[Conflict]:
    """Conflicts among changes that were all computed against one original."""
    order = {name: idx for idx, name in enumerate(reviewer_order or [])}
    _, conflicts, _ = _split_groups(group_changes(changes), order)
    return conflicts


# ============================================================
# Resolution
# ============================================================

def _to_text_offset(offsets: List[int], point: int, text_len: int) -> int:
    if point < len(offsets):
        return offsets[point]
    return offsets[-1] + 1 if offsets else text_len


def _text_span(change: Change, orig_offsets: List[int], offsets: List[int],
               text_len: int) -> Tuple[int, int]:
    """
    Map a change's range in the raw original onto the merged text.

    Both texts are reached through their rejected views, which hide comment
    fences: the original coordinate becomes a view index, and the view
    index becomes an offset in the merged text.
    """
    view_start = bisect_left(orig_offsets, change.start)
    view_end = bisect_left(orig_offsets, change.end)
    start = _to_text_offset(offsets, view_start, text_len)
    if view_end > view_start:
        return start, offsets[view_end - 1] + 1
    return start, start


def resolve_conflict(text: str, conflict: Conflict, chosen_index: Optional[int],
                     original_text: str) -> str:
    """
    Apply exactly one reviewer's changes for a conflict to merged text.

    The original range is located through the rejected reading of the
    merged text's annotations, which must still equal the rejected reading
    of ``original_text``. Every change of the chosen reviewer is rendered as
    track-change markup; ``None`` (skip) leaves the range at its original text.

    Args:
        text: Current merged text (may already contain other resolutions)
        conflict: Conflict from the merge result
        chosen_index: Index into ``conflict.choices``, or None to skip
        original_text: The original the merge was computed against

    Returns:
        Updated text

    Raises:
        InvalidTargetError: bad index, or text no longer matches the original
    """
    if chosen_index is None:
        return text
    if not 0 <= chosen_index < len(conflict.choices):
        raise InvalidTargetError(
            f"Invalid choice {chosen_index} for conflict at {conflict.start}-{conflict.end}",
            valid=f"0-{len(conflict.choices) - 1} or None (skip)",
        )

    orig_view, orig_offsets = text_view(original_text, accept=False)
    view, offsets = text_view(text, accept=False)
    if view != orig_view:
        raise InvalidTargetError(
            "Merged text no longer corresponds to the original "
            "(track changes were accepted or rejected after merging).\n"
            "Resolve conflicts before reviewing individual changes."
        )

    # Right to left, so lower offsets stay valid after each splice
    chosen = sorted(conflict.choices[chosen_index], key=lambda c: (c.start, c.end), reverse=True)
    for change in chosen:
        start, end = _text_span(change, orig_offsets, offsets, len(text))
        text = splice_markup(text, start, end, change_markup(change))
    return text


def resolve_all_conflicts(text: str, conflicts: List[Conflict], original_text: str,
                          choice: int = 0) -> str:
    """Resolve every conflict with the same choice index (``auto`` mode uses 0)."""
    # Higher ranges first; each resolution is located afresh through the view anyway
    for conflict in sorted(conflicts, key=lambda c: c.start, reverse=True):
        text = resolve_conflict(text, conflict, choice, original_text)
    return text


# ============================================================
# Merge
# ============================================================

def merge(original: str, reviewers: List[ReviewerText], auto: bool = False,
          verbose: bool = False, visible_comments: bool = True) -> MergeResult:
    """
    Merge several reviewers' documents against one original.

    Args:
        original: Plain-text source
        reviewers: Reviewer texts (and comments), in priority order
        auto: Resolve every conflict with the first listed reviewer's change
        verbose: Print progress
        visible_comments: Also turn ``[Author: note]`` text in each reviewer's
            document into comments

    Returns:
        MergeResult; ``merged_text`` holds non-conflicting changes as
        markup plus all comments, conflicting ranges stay original unless
        ``auto`` is set
    """
    all_changes: List[Change] = []
    comments: List[ReviewComment] = []
    for reviewer in reviewers:
        text = reviewer.text
        comments.extend(reviewer.comments)
        if visible_comments:
            text, notes = extract_visible_comments(text)
            comments.extend(notes)
        changes = diff_changes(original, text, reviewer=reviewer.name)
        if verbose:
            print(f"  [Diff] {reviewer.name}: {len(changes)} change(s)")
        all_changes.extend(changes)

    order = {r.name: idx for idx, r in enumerate(reviewers)}
    applicable, conflicts, agreed = _split_groups(group_changes(all_changes), order)
    if verbose:
        for conflict in conflicts:
            print(f"  [Conflict] {conflict.start}-{conflict.end}: "
                  f"'{format_text_preview(original[conflict.start:conflict.end])}' "
                  f"({', '.join(conflict.reviewers)})")

    merged = render_changes(original, applicable)

    merged, warnings, unanchored = anchor_comments(merged, comments, verbose=verbose)

    if auto and conflicts:
        merged = resolve_all_conflicts(merged, conflicts, original, choice=0)

    stats = {
        'reviewers': len(reviewers),
        'total_changes': len(all_changes),
        'non_conflicting': len(applicable),
        'agreed': agreed,
        'conflicts': len(conflicts),
        'comments': len(comments),
        'unanchored': unanchored,
        'auto_resolved': len(conflicts) if auto else 0,
    }
    return MergeResult(
        merged_text=merged,
        original_text=original,
        conflicts=conflicts,
        changes=all_changes,
        stats=stats,
        warnings=warnings,
    )


def _describe_change(change: Change) -> str:
    old = format_text_preview(change.original_text, 40)
    new = format_text_preview(change.text, 40)
    if change.type == 'insert':
        return f'insert "{new}"'
    if change.type == 'delete':
        return f'delete "{old}"'
    return f'"{old}" -> "{new}"'


def format_conflict(conflict: Conflict, original_text: str, context: int = 40) -> str:
    """
    Human-readable conflict description with one numbered choice per reviewer.

    Example:
        Original: ...The [fast red old] car...
          1. Alice: "fast" -> "quick"; "old" -> "new"
          2. Bob: "fast red old" -> "slow blue young"
    """
    lead = original_text[max(0, conflict.start - context):conflict.start].replace('\n', ' ')
    tail = original_text[conflict.end:conflict.end + context].replace('\n', ' ')
    span = original_text[conflict.start:conflict.end]
    lines = [f"  Original: ...{lead}[{span}]{tail}..."]
    for idx, choice in enumerate(conflict.choices, 1):
        edits = '; '.join(_describe_change(change) for change in choice)
        lines.append(f"    {idx}. {choice[0].reviewer}: {edits}")
    return '\n'.join(lines)
