"""
Inline annotation model: a single-pass scanner for the four fence forms
and the pure text <-> annotation-list operations built on it.

Positions returned here describe exactly the snapshot that was scanned.
Callers that mutate the text must re-scan (or work in descending position
order) before using them again.
"""

import re
from typing import Dict, List, Optional, Tuple

from .common import (
    COMMENT,
    CONTEXT_CHARS,
    DELETE,
    FENCES,
    INSERT,
    OPENERS,
    RESOLVED_MARK,
    SUBSTITUTE,
    SUBSTITUTE_SEPARATOR,
    TRACK_CHANGE_KINDS,
    ANNOTATION_KINDS,
    Annotation,
)

# "Author: message" prefix inside a comment body. The colon must be followed
# by whitespace so URLs and times are not mistaken for authors.
AUTHOR_PATTERN = re.compile(r'([^:\n{}]{1,60}):(?:\s+|$)')

MARKER_LEN = 3


def _find_closer(text: str, kind: str, start: int) -> int:
    """
    Find the closing marker of a fence opened at ``start``.

    Returns -1 when the fence is unterminated or an opening marker of a
    different kind appears before the closer.
    """
    _, closer = FENCES[kind]
    body_start = start + MARKER_LEN
    close_idx = text.find(closer, body_start)
    if close_idx == -1:
        return -1
    for opener, other_kind in OPENERS.items():
        if other_kind != kind and text.find(opener, body_start, close_idx) != -1:
            return -1
    return close_idx


def parse_comment_body(body: str) -> Tuple[Optional[str], str, bool]:
    """
    Split a comment body into (author, message, resolved).

    Examples:
        "Ann: fix this"       -> ("Ann", "fix this", False)
        "✓ Ann: fix this"     -> ("Ann", "fix this", True)
        "see http://x.org"    -> (None, "see http://x.org", False)
    """
    text = body.lstrip()
    resolved = False
    if text.startswith(RESOLVED_MARK):
        resolved = True
        text = text[len(RESOLVED_MARK):].lstrip()

    match = AUTHOR_PATTERN.match(text)
    if match and match.group(1).strip():
        return match.group(1).strip(), text[match.end():].strip(), resolved
    return None, text.strip(), resolved


def parse(text: str) -> List[Annotation]:
    """
    Scan text once, left to right, and return every well-formed annotation.

    Malformed fences are never an error; they are skipped and stay literal.
    A comment separated from the previous comment's closing marker by
    whitespace only is recorded as a reply to that thread's root.

    Args:
        text: Document text

    Returns:
        Annotations in document order
    """
    annotations: List[Annotation] = []
    plain_tail = ''
    line = 1
    cursor = 0
    prev_comment_end: Optional[int] = None
    thread_root: Optional[int] = None

    i = text.find('{')
    while i != -1:
        kind = OPENERS.get(text[i:i + MARKER_LEN])
        close_idx = _find_closer(text, kind, i) if kind else -1
        body = text[i + MARKER_LEN:close_idx] if close_idx != -1 else ''

        if close_idx == -1 or (kind == SUBSTITUTE and SUBSTITUTE_SEPARATOR not in body):
            i = text.find('{', i + 1)
            continue

        end = close_idx + MARKER_LEN
        gap = text[cursor:i]
        line += gap.count('\n')
        plain_tail = (plain_tail + gap)[-CONTEXT_CHARS:]

        annotation = Annotation(
            kind=kind,
            content=body,
            position=i,
            markup=text[i:end],
            line=line,
            before=plain_tail.strip(),
        )

        if kind == SUBSTITUTE:
            annotation.content, annotation.replacement = body.split(SUBSTITUTE_SEPARATOR, 1)
        elif kind == COMMENT:
            annotation.author, annotation.content, annotation.resolved = parse_comment_body(body)
            if prev_comment_end is not None and not text[prev_comment_end:i].strip():
                annotation.reply_to = thread_root
            else:
                thread_root = i

        if kind == COMMENT:
            prev_comment_end = end
        else:
            prev_comment_end = None
            if kind == INSERT:
                plain_tail = (plain_tail + annotation.content)[-CONTEXT_CHARS:]
            elif kind == SUBSTITUTE:
                plain_tail = (plain_tail + annotation.replacement)[-CONTEXT_CHARS:]

        annotations.append(annotation)
        line += annotation.markup.count('\n')
        cursor = end
        i = text.find('{', end)

    return annotations


def count_annotations(text: str) -> Dict[str, int]:
    """Count annotations per kind, plus a 'total' entry."""
    counts = {kind: 0 for kind in ANNOTATION_KINDS}
    for annotation in parse(text):
        counts[annotation.kind] += 1
    counts['total'] = sum(counts[kind] for kind in ANNOTATION_KINDS)
    return counts


def _clean_form(annotation: Annotation, keep_comments: bool) -> str:
    if annotation.kind == INSERT:
        return annotation.content
    if annotation.kind == DELETE:
        return ''
    if annotation.kind == SUBSTITUTE:
        return annotation.replacement
    return annotation.markup if keep_comments else ''


def _strip_once(text: str, keep_comments: bool) -> str:
    parts = []
    cursor = 0
    for annotation in parse(text):
        parts.append(text[cursor:annotation.position])
        parts.append(_clean_form(annotation, keep_comments))
        cursor = annotation.end
    parts.append(text[cursor:])
    return ''.join(parts)


def strip(text: str, keep_comments: bool = False) -> str:
    """
    Produce the clean reading copy of a document.

    Insertions keep their content, deletions vanish with their content,
    substitutions resolve to the new half, comments are dropped unless
    ``keep_comments`` is set.

    Removing a fence can join the text around it into a new, valid fence
    (e.g. ``{{--x--}++a++}``), so the scan is repeated until nothing
    changes. Every changing pass shortens the text, so this terminates.
    """
    result = _strip_once(text, keep_comments)
    while result != text:
        text = result
        result = _strip_once(text, keep_comments)
    return result


def filter_annotations(annotations: List[Annotation], pending_only: bool = False,
                       resolved_only: bool = False,
                       author: Optional[str] = None) -> List[Annotation]:
    """
    Filter annotations by status and author.

    ``pending_only`` and ``resolved_only`` are mutually exclusive by
    convention; passing both simply yields nothing.
    Track changes count as pending. Author matching is case-insensitive
    against the display author ("Anonymous" when unattributed).
    """
    result = []
    for annotation in annotations:
        if pending_only and annotation.resolved:
            continue
        if resolved_only and not annotation.resolved:
            continue
        if author is not None and annotation.display_author.lower() != author.lower():
            continue
        result.append(annotation)
    return result


def get_comments(text: str, pending_only: bool = False, resolved_only: bool = False,
                 author: Optional[str] = None) -> List[Annotation]:
    """Comments in document order, optionally filtered."""
    comments = [a for a in parse(text) if a.kind == COMMENT]
    return filter_annotations(comments, pending_only=pending_only,
                              resolved_only=resolved_only, author=author)


def get_track_changes(text: str) -> List[Annotation]:
    """Insertions, deletions and substitutions in document order."""
    return [a for a in parse(text) if a.kind in TRACK_CHANGE_KINDS]


def text_view(text: str, accept: bool,
              annotations: Optional[List[Annotation]] = None) -> Tuple[str, List[int]]:
    """
    Render the accepted or rejected reading of a text, with an offset map.

    ``accept=True`` shows insertions and the new half of substitutions;
    ``accept=False`` shows deletions and the old half. Comments are hidden
    in both. ``offsets[i]`` is the index in ``text`` of view character ``i``.

    Args:
        text: Annotated text
        accept: Which reading to produce
        annotations: Pre-parsed annotations of ``text`` (parsed if omitted)

    Returns:
        (view_text, offsets)
    """
    if annotations is None:
        annotations = parse(text)

    chunks: List[str] = []
    offsets: List[int] = []

    def keep(start: int, end: int):
        chunks.append(text[start:end])
        offsets.extend(range(start, end))

    cursor = 0
    for annotation in annotations:
        keep(cursor, annotation.position)
        body_start = annotation.position + MARKER_LEN
        if annotation.kind == INSERT and accept:
            keep(body_start, body_start + len(annotation.content))
        elif annotation.kind == DELETE and not accept:
            keep(body_start, body_start + len(annotation.content))
        elif annotation.kind == SUBSTITUTE:
            if accept:
                new_start = body_start + len(annotation.content) + len(SUBSTITUTE_SEPARATOR)
                keep(new_start, new_start + len(annotation.replacement))
            else:
                keep(body_start, body_start + len(annotation.content))
        cursor = annotation.end
    keep(cursor, len(text))

    return ''.join(chunks), offsets


def annotation_at(annotations: List[Annotation], offset: int) -> Optional[Annotation]:
    """Return the annotation whose fence strictly contains ``offset``, if any."""
    for annotation in annotations:
        if annotation.position < offset < annotation.end:
            return annotation
        if annotation.position >= offset:
            break
    return None
