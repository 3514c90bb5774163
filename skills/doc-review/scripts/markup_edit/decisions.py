"""
Accept/reject for track changes and resolve/unresolve/reply for comments.

Every function takes the current text and returns new text. Targets are
located by position in the *current* text; an annotation parsed from an
older snapshot is rejected instead of being applied at a stale offset.
"""

from typing import Callable, List, Optional

from .annotations import parse
from .common import (
    COMMENT,
    DELETE,
    INSERT,
    RESOLVED_MARK,
    SUBSTITUTE,
    SUBSTITUTE_SEPARATOR,
    TRACK_CHANGE_KINDS,
    Annotation,
    InvalidTargetError,
    format_text_preview,
    render_change_markup,
    render_comment_markup,
)


def _describe(annotation: Annotation) -> str:
    return f"{annotation.kind} at offset {annotation.position} (line {annotation.line}): " \
           f"'{format_text_preview(annotation.content)}'"


def _locate(text: str, annotation: Annotation, kinds) -> Annotation:
    """
    Find the live annotation matching ``annotation`` in the current text.

    Matching is by position, then confirmed by identical markup so an
    annotation from a stale snapshot cannot hit a different fence.

    Raises:
        InvalidTargetError: when no such annotation exists
    """
    current = [a for a in parse(text) if a.kind in kinds]
    for candidate in current:
        if candidate.position == annotation.position and candidate.markup == annotation.markup:
            return candidate

    valid = ', '.join(str(a.position) for a in current) or 'none'
    raise InvalidTargetError(
        f"No matching {'/'.join(kinds)} annotation in current text: {_describe(annotation)}.\n"
        f"The text may have changed since the annotation was parsed; re-parse and retry.",
        valid=f"offsets [{valid}]",
    )


def _decided_form(annotation: Annotation, accept: bool) -> str:
    if annotation.kind == INSERT:
        return annotation.content if accept else ''
    if annotation.kind == DELETE:
        return '' if accept else annotation.content
    if annotation.kind == SUBSTITUTE:
        return annotation.replacement if accept else annotation.content
    raise InvalidTargetError(f"Comments cannot be accepted or rejected: {_describe(annotation)}")


def _rewrite(text: str, annotation: Annotation, replacement: str) -> str:
    return text[:annotation.position] + replacement + text[annotation.end:]


def apply_decision(text: str, change: Annotation, accept: bool) -> str:
    """
    Accept or reject exactly one track change.

    accept: insertion/substitution content becomes plain text, deletion
    content disappears. reject: insertion disappears, deletion content is
    restored, substitution reverts to its old half.

    Args:
        text: Current document text
        change: Track-change annotation parsed from ``text``
        accept: True to accept, False to reject

    Returns:
        Updated text

    Raises:
        InvalidTargetError: when ``change`` is not present in ``text``
    """
    if change.kind not in TRACK_CHANGE_KINDS:
        raise InvalidTargetError(f"Not a track change: {_describe(change)}")
    live = _locate(text, change, TRACK_CHANGE_KINDS)
    return _rewrite(text, live, _decided_form(live, accept))


def _decide_batch(text: str, accept: bool,
                  predicate: Optional[Callable[[Annotation], bool]] = None) -> str:
    # Descending position: each rewrite only touches offsets above the
    # remaining (lower) annotations, so one parse serves the whole pass.
    # Without a predicate, passes repeat until no track change is left
    # (removing a fence can join surrounding text into a new one).
    while True:
        changes = [a for a in parse(text) if a.kind in TRACK_CHANGE_KINDS]
        if predicate is not None:
            changes = [a for a in changes if predicate(a)]
        if not changes:
            return text
        for change in sorted(changes, key=lambda a: a.position, reverse=True):
            text = _rewrite(text, change, _decided_form(change, accept))
        if predicate is not None:
            return text


def accept_all(text: str, predicate: Optional[Callable[[Annotation], bool]] = None) -> str:
    """Accept every track change (or those matching ``predicate``)."""
    return _decide_batch(text, True, predicate)


def reject_all(text: str, predicate: Optional[Callable[[Annotation], bool]] = None) -> str:
    """Reject every track change (or those matching ``predicate``)."""
    return _decide_batch(text, False, predicate)


def _status_markup(comment: Annotation, resolved: bool) -> str:
    body = comment.markup[3:-3].lstrip()
    if body.startswith(RESOLVED_MARK):
        body = body[len(RESOLVED_MARK):].lstrip()
    if resolved:
        body = f"{RESOLVED_MARK} {body}"
    return '{>>' + body + '<<}'


def set_status(text: str, comment: Annotation, resolved: bool) -> str:
    """
    Mark a comment resolved or pending.

    Only the marker region of that one comment is rewritten; the length of
    the text may change, so positions of later annotations must be
    re-derived before another call.

    Raises:
        InvalidTargetError: when ``comment`` is not present in ``text``
    """
    if comment.kind != COMMENT:
        raise InvalidTargetError(f"Only comments can be resolved: {_describe(comment)}")
    live = _locate(text, comment, (COMMENT,))
    if live.resolved == resolved:
        return text
    return _rewrite(text, live, _status_markup(live, resolved))


def resolve_all(text: str, resolved: bool = True,
                predicate: Optional[Callable[[Annotation], bool]] = None) -> str:
    """Set the status of every comment (or those matching ``predicate``)."""
    comments = [a for a in parse(text) if a.kind == COMMENT and a.resolved != resolved]
    if predicate is not None:
        comments = [a for a in comments if predicate(a)]
    for comment in sorted(comments, key=lambda a: a.position, reverse=True):
        text = _rewrite(text, comment, _status_markup(comment, resolved))
    return text


def thread_of(annotations: List[Annotation], comment: Annotation) -> List[Annotation]:
    """Return the comment's thread: root first, then replies in order."""
    root = comment.reply_to if comment.reply_to is not None else comment.position
    return [a for a in annotations
            if a.kind == COMMENT and (a.position == root or a.reply_to == root)]


def add_reply(text: str, comment: Annotation, author: str, message: str) -> str:
    """
    Insert a reply after a comment.

    The reply fence follows the target's closing marker after a single
    space. When the thread already has replies it goes after the last one,
    so a thread always reads parent first, then replies in insertion order.

    Raises:
        InvalidTargetError: when ``comment`` is not present in ``text``
        ValueError: when the message is empty
    """
    if comment.kind != COMMENT:
        raise InvalidTargetError(f"Replies can only target comments: {_describe(comment)}")
    if not message or not message.strip():
        raise ValueError("Reply message is empty")

    live = _locate(text, comment, (COMMENT,))
    thread = thread_of(parse(text), live)
    insert_pos = thread[-1].end if thread else live.end

    reply = render_comment_markup(author, message)
    return text[:insert_pos] + ' ' + reply + text[insert_pos:]


def _tidy_form(annotation: Annotation) -> str:
    if annotation.kind == INSERT and not annotation.content.strip():
        return annotation.content
    if annotation.kind == DELETE and not annotation.content.strip():
        return ''
    if annotation.kind == SUBSTITUTE:
        if annotation.content == annotation.replacement:
            return annotation.content
        if not annotation.content:
            return render_change_markup(INSERT, annotation.replacement)
        if not annotation.replacement:
            return render_change_markup(DELETE, annotation.content)
    return annotation.markup


def cleanup_annotations(text: str) -> str:
    """
    Tidy track changes left behind by hand edits or repeated imports.

    - empty or whitespace-only insertions and deletions are dropped
    - a substitution with identical halves becomes its text
    - a substitution with one empty half becomes an insertion or deletion
    - a deletion directly followed by an insertion becomes one substitution

    The accepted reading of the text never changes. Comments are untouched.

    Example:
        "a{----}b {--cat--}{++dog++}" -> "ab {~~cat~>dog~~}"
    """
    annotations = parse(text)
    parts = []
    cursor = 0
    idx = 0
    while idx < len(annotations):
        annotation = annotations[idx]
        parts.append(text[cursor:annotation.position])
        following = annotations[idx + 1] if idx + 1 < len(annotations) else None
        if (annotation.kind == DELETE and following is not None and following.kind == INSERT
                and following.position == annotation.end
                and annotation.content.strip() and following.content.strip()
                and SUBSTITUTE_SEPARATOR not in annotation.content):
            parts.append(render_change_markup(SUBSTITUTE, annotation.content, following.content))
            cursor = following.end
            idx += 2
            continue
        parts.append(_tidy_form(annotation))
        cursor = annotation.end
        idx += 1
    parts.append(text[cursor:])
    return ''.join(parts)
