"""
Diff-to-annotation conversion.

Aligns an original document against reviewer text at word granularity,
classifies the hunks into insert/delete/substitute changes, renders them
into the original as inline fences, then anchors reviewer comments in the
annotated result.
"""

import difflib
import re
from typing import Dict, List, Optional, Sequence, Tuple

from .annotations import annotation_at, parse, text_view
from .common import (
    COMMENT,
    DELETE,
    INSERT,
    SUBSTITUTE,
    Change,
    ConvertResult,
    ReviewComment,
    format_text_preview,
    render_change_markup,
    render_comment_markup,
)

# Words keep their trailing whitespace so hunks read as whole words
# ("The {++big ++}cat"), punctuation is split off as its own token.
TOKEN_PATTERN = re.compile(r"\w+(?:['’\-]\w+)*\s*|[^\w\s]\s*|\s+")

# Markdown syntax a Word round trip drops. Headings, list markers and
# blockquotes at line start; emphasis, inline code and link markup inline.
MARKDOWN_LINE_PREFIX = re.compile(r'^(?:#{1,6}[ \t]+|[ \t]*(?:[-*+]|\d+\.)[ \t]+|>[ \t]?)', re.MULTILINE)
MARKDOWN_HEADING = re.compile(r'#{1,6}[ \t]+')
MARKDOWN_PAIRED = (
    re.compile(r'(\*\*|\*)(?=\S)[^*\n]+?(?<=\S)\1'),
    re.compile(r'(?<!\w)(__|_)(?=\S)[^_\n]+?(?<=\S)\1(?!\w)'),
    re.compile(r'(`)[^`\n]+\1'),
)
MARKDOWN_LINK = re.compile(r'(?<!!)(\[)[^\]\n]+(\]\([^)\s]+\))')

# "[Author: note]" typed straight into a reviewer's document
VISIBLE_COMMENT_PATTERN = re.compile(r'[ \t]*\[([^\]\[:@\n]{1,60}):[ \t]*([^\]\n]+)\](?!\()')
VISIBLE_CONTEXT_CHARS = 150

# Hidden-character classes in the original
VISIBLE = 0
HIDDEN_COMMENT = 1
HIDDEN_MARKUP = 2

# Anchor matching
ANCHOR_PREFIX_CHARS = 30       # fixed-length prefix fallback
CONTEXT_MATCH_CHARS = 30       # before/after context used for placement
ANCHOR_SEARCH_WINDOW = 500     # max gap between before/after context hits

# (key, start, end) for original tokens, (key, text) for revised tokens
OriginalToken = Tuple[str, int, int]
RevisedToken = Tuple[str, str]
# (open start, open end, close start, close end) of a paired Markdown marker
MarkerPair = Tuple[int, int, int, int]


# ============================================================
# Tokenization
# ============================================================

def _token_key(token: str) -> str:
    """Comparison key: the token with its whitespace reduced to a space or newline class."""
    word = token.rstrip()
    separator = token[len(word):]
    if not separator:
        return word
    return word + ('\n' if '\n' in separator else ' ')


def _hide(mask: bytearray, start: int, end: int, kind: int):
    if start < end and not any(mask[start:end]):
        mask[start:end] = bytes([kind]) * (end - start)


def _hidden_mask(original: str, markdown: bool = True) -> Tuple[bytearray, List[MarkerPair]]:
    """
    Mark the characters of the original the diff must not see.

    Comment fences are always hidden. With ``markdown`` set, Markdown
    syntax is hidden too, and paired inline markers are returned so a
    changed range can avoid splitting them.

    Returns:
        (mask with one class per character, paired marker spans)
    """
    mask = bytearray(len(original))
    for annotation in parse(original):
        if annotation.kind == COMMENT:
            _hide(mask, annotation.position, annotation.end, HIDDEN_COMMENT)

    pairs: List[MarkerPair] = []
    if not markdown:
        return mask, pairs

    for match in MARKDOWN_LINE_PREFIX.finditer(original):
        _hide(mask, match.start(), match.end(), HIDDEN_MARKUP)
    for pattern in MARKDOWN_PAIRED:
        for match in pattern.finditer(original):
            width = len(match.group(1))
            pair = (match.start(), match.start() + width, match.end() - width, match.end())
            if any(mask[pair[0]:pair[1]]) or any(mask[pair[2]:pair[3]]):
                continue
            _hide(mask, pair[0], pair[1], HIDDEN_MARKUP)
            _hide(mask, pair[2], pair[3], HIDDEN_MARKUP)
            pairs.append(pair)
    for match in MARKDOWN_LINK.finditer(original):
        pair = (match.start(1), match.end(1), match.start(2), match.end(2))
        if any(mask[pair[0]:pair[1]]) or any(mask[pair[2]:pair[3]]):
            continue
        _hide(mask, pair[0], pair[1], HIDDEN_MARKUP)
        _hide(mask, pair[2], pair[3], HIDDEN_MARKUP)
        pairs.append(pair)
    return mask, pairs


def _tokenize_original(original: str, mask: bytearray) -> List[OriginalToken]:
    """
    Tokenize the visible characters of the original.

    Token offsets still point into ``original``, so a token that runs up to
    a comment or a Markdown marker spans it and the hidden text survives
    conversion untouched.
    """
    offsets = [idx for idx, hidden in enumerate(mask) if hidden == VISIBLE]
    clean = ''.join(original[idx] for idx in offsets)
    return [(_token_key(m.group()), offsets[m.start()], offsets[m.end() - 1] + 1)
            for m in TOKEN_PATTERN.finditer(clean)]


def _tokenize_revised(revised: str) -> List[RevisedToken]:
    return [(_token_key(m.group()), m.group()) for m in TOKEN_PATTERN.finditer(revised)]


# ============================================================
# Alignment and classification
# ============================================================

def _raw_hunks(orig_keys: Sequence[str], rev_keys: Sequence[str]) -> List[Tuple[str, int, int, int, int]]:
    """
    Token-level diff hunks: [(op, i1, i2, j1, j2), ...] with op in delete|insert.

    'replace' opcodes are emitted as a delete followed by an insert; pairing
    them back up is left to the classification pass.
    """
    matcher = difflib.SequenceMatcher(None, orig_keys, rev_keys, autojunk=False)
    hunks = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == 'delete':
            hunks.append((DELETE, i1, i2, j1, j1))
        elif tag == 'insert':
            hunks.append((INSERT, i1, i1, j1, j2))
        elif tag == 'replace':
            hunks.append((DELETE, i1, i2, j1, j1))
            hunks.append((INSERT, i2, i2, j1, j2))
    return hunks


def classify_hunks(hunks: List[Tuple[str, int, int, int, int]]) -> List[Tuple[str, int, int, int, int]]:
    """
    Merge each deletion that is immediately followed by an insertion at the
    same alignment point into a single substitution.

    Examples:
        [('delete', 2, 3, 2, 2), ('insert', 3, 3, 2, 3)]
        -> [('substitute', 2, 3, 2, 3)]
    """
    classified = []
    idx = 0
    while idx < len(hunks):
        op, i1, i2, j1, j2 = hunks[idx]
        if op == DELETE and idx + 1 < len(hunks):
            next_op, n_i1, _, n_j1, n_j2 = hunks[idx + 1]
            if next_op == INSERT and n_i1 == i2:
                classified.append((SUBSTITUTE, i1, i2, n_j1, n_j2))
                idx += 2
                continue
        classified.append((op, i1, i2, j1, j2))
        idx += 1
    return classified


def _without_comments(segment: str) -> str:
    """Drop comment fences from a slice of the original."""
    parts = []
    cursor = 0
    for annotation in parse(segment):
        if annotation.kind == COMMENT:
            parts.append(segment[cursor:annotation.position])
            cursor = annotation.end
    parts.append(segment[cursor:])
    return ''.join(parts)


def _common_trailing_whitespace(old: str, new: str) -> int:
    count = 0
    while (count < len(old) and count < len(new)
           and old[-1 - count] == new[-1 - count] and old[-1 - count].isspace()):
        count += 1
    return count


def _visible_text(original: str, start: int, end: int, mask: bytearray) -> str:
    return ''.join(original[idx] for idx in range(start, end) if mask[idx] == VISIBLE)


def _fit_markers(start: int, end: int, mask: bytearray, pairs: List[MarkerPair]) -> Tuple[int, int]:
    """
    Keep a changed range from splitting Markdown markers.

    Markers at the edges of the range stay outside it; a range that still
    holds one marker of a pair but all of the text between them grows to
    take the whole formatted phrase.

    Examples:
        "*cat*" with "cat*" changed -> "cat"
        "*very* " deleted from "very* " -> "*very* "
    """
    while start < end and mask[start] == HIDDEN_MARKUP:
        start += 1
    while end > start and mask[end - 1] == HIDDEN_MARKUP:
        end -= 1
    for open_start, open_end, close_start, close_end in pairs:
        has_open = start < open_end and open_start < end
        has_close = start < close_end and close_start < end
        if has_open != has_close and start <= open_end and close_start <= end:
            start, end = min(start, open_start), max(end, close_end)
    return start, end


def _keep_heading(start: int, end: int, original: str) -> int:
    """
    Move the start of a deletion past a heading it would remove whole.

    Returns:
        New start, equal to ``end`` when nothing is left to delete
    """
    line_start = original.rfind('\n', 0, start) + 1
    prefix = MARKDOWN_HEADING.match(original, line_start)
    if prefix is None or prefix.end() != start:
        return start
    line_end = original.find('\n', start)
    if line_end == -1:
        line_end = len(original)
    if end < line_end:
        return start
    while line_end < end and original[line_end].isspace():
        line_end += 1
    return line_end


def _take_line_prefix(start: int, end: int, original: str) -> int:
    """Start a deletion at its line start when it removes a whole list item or quote line."""
    line_start = original.rfind('\n', 0, start) + 1
    prefix = MARKDOWN_LINE_PREFIX.match(original, line_start)
    if prefix is None or prefix.end() != start:
        return start
    if end == len(original) or original[end - 1] == '\n':
        return line_start
    return start


def _build_change(op: str, start: int, end: int, original: str, new_text: str,
                  reviewer: str, mask: bytearray, pairs: List[MarkerPair],
                  markdown: bool = True) -> Optional[Change]:
    if op == SUBSTITUTE:
        trim = _common_trailing_whitespace(original[start:end], new_text)
        if trim:
            end -= trim
            new_text = new_text[:-trim]
    if op in (DELETE, SUBSTITUTE):
        start, end = _fit_markers(start, end, mask, pairs)
        if markdown and op == DELETE:
            kept = _keep_heading(start, end, original)
            if kept >= end:
                return None
            start = kept if kept != start else _take_line_prefix(start, end, original)
    if op == SUBSTITUTE:
        if not _visible_text(original, start, end, mask):
            op = INSERT
            end = start
        elif not new_text:
            op = DELETE
    if op == INSERT and not new_text:
        return None
    if op == SUBSTITUTE and _visible_text(original, start, end, mask) == new_text:
        return None

    change = Change(type=op, start=start, end=end, reviewer=reviewer)
    if op in (DELETE, SUBSTITUTE):
        change.original_text = _without_comments(original[start:end])
    if op in (INSERT, SUBSTITUTE):
        change.text = new_text
    return change


def diff_changes(original: str, revised: str, reviewer: str = '',
                 markdown: bool = True) -> List[Change]:
    """
    Compute classified changes of ``revised`` against ``original``.

    Ranges are character offsets into ``original``. An empty or identical
    revision yields no changes; a full rewrite yields one large substitution.

    Args:
        original: Plain-text source (existing comment fences are ignored)
        revised: Text extracted from the reviewer's document
        reviewer: Name recorded on each change
        markdown: Treat Markdown syntax in the original as invisible, since
            the reviewer's document shows it rendered

    Returns:
        Changes in original order
    """
    if not revised.strip() or revised == original:
        return []

    mask, pairs = _hidden_mask(original, markdown)
    orig_tokens = _tokenize_original(original, mask)
    rev_tokens = _tokenize_revised(revised)
    orig_keys = [t[0] for t in orig_tokens]
    rev_keys = [t[0] for t in rev_tokens]
    if orig_keys == rev_keys:
        return []

    if orig_tokens:
        tail = orig_tokens[-1][2]
    else:
        tail = len(original)

    changes = []
    for op, i1, i2, j1, j2 in classify_hunks(_raw_hunks(orig_keys, rev_keys)):
        start = orig_tokens[i1][1] if i1 < len(orig_tokens) else tail
        end = orig_tokens[i2 - 1][2] if i2 > i1 else start
        new_text = ''.join(t[1] for t in rev_tokens[j1:j2])
        change = _build_change(op, start, end, original, new_text, reviewer, mask, pairs, markdown)
        if change is not None:
            changes.append(change)
    return changes


# ============================================================
# Rendering
# ============================================================

def change_markup(change: Change) -> str:
    """Inline fence for a change."""
    if change.type == INSERT:
        return render_change_markup(INSERT, change.text)
    if change.type == DELETE:
        return render_change_markup(DELETE, change.original_text)
    return render_change_markup(SUBSTITUTE, change.original_text, change.text)


def splice_markup(text: str, start: int, end: int, markup: str) -> str:
    """
    Replace ``text[start:end]`` with ``markup``.

    Comment fences inside the replaced span are kept and moved directly
    after the new markup instead of being swallowed by it.
    """
    moved = ''.join(a.markup for a in parse(text[start:end]) if a.kind == COMMENT)
    return text[:start] + markup + moved + text[end:]


def render_changes(original: str, changes: List[Change]) -> str:
    """
    Splice changes into the original as inline fences.

    Applied right-to-left so each splice leaves the offsets of the
    remaining (lower) changes valid.
    """
    text = original
    for change in sorted(changes, key=lambda c: (c.start, c.end), reverse=True):
        text = splice_markup(text, change.start, change.end, change_markup(change))
    return text


def change_stats(changes: List[Change]) -> Dict[str, int]:
    stats = {INSERT: 0, DELETE: 0, SUBSTITUTE: 0}
    for change in changes:
        stats[change.type] += 1
    stats['total'] = len(changes)
    return stats


# ============================================================
# Comment anchoring
# ============================================================

def _normalized_view(text: str, offsets: Optional[List[int]] = None) -> Tuple[str, List[int]]:
    """Lowercase text with whitespace runs collapsed, plus a map back to source offsets."""
    chars: List[str] = []
    mapped: List[int] = []
    prev_space = False
    for idx, ch in enumerate(text):
        source = offsets[idx] if offsets is not None else idx
        if ch.isspace():
            if prev_space:
                continue
            chars.append(' ')
            prev_space = True
        else:
            chars.append(ch.lower())
            prev_space = False
        mapped.append(source)
    return ''.join(chars), mapped


def _normalize(text: str) -> str:
    return ' '.join(text.split()).lower()


def _find_all(haystack: str, needle: str) -> List[int]:
    if not needle:
        return []
    found = []
    idx = haystack.find(needle)
    while idx != -1:
        found.append(idx)
        idx = haystack.find(needle, idx + 1)
    return found


class _AnchorIndex:
    """Searchable views of one annotated-text snapshot."""

    def __init__(self, text: str):
        self.text = text
        self.annotations = parse(text)
        accepted, accepted_offsets = text_view(text, accept=True, annotations=self.annotations)
        mask, _ = _hidden_mask(accepted)
        plain = [(ch, offset) for ch, offset, hidden in zip(accepted, accepted_offsets, mask) if hidden == VISIBLE]
        self.views = [
            ('normalized', _normalized_view(text)),
            ('accepted', _normalized_view(accepted, accepted_offsets)),
            ('plain', _normalized_view(''.join(ch for ch, _ in plain), [offset for _, offset in plain])),
        ]

    def span_matches(self, needle: str) -> List[Tuple[int, int]]:
        """Spans (start, end) in the annotated text where ``needle`` occurs."""
        spans = []
        for idx in _find_all(self.text, needle):
            spans.append((idx, idx + len(needle)))
        if spans:
            return spans
        return self.view_matches(_normalize(needle))[1]

    def view_matches(self, needle: str) -> Tuple[Optional[str], List[Tuple[int, int]]]:
        for name, (view, offsets) in self.views:
            hits = _find_all(view, needle)
            if hits:
                return name, [(offsets[i], offsets[i + len(needle) - 1] + 1) for i in hits]
        return None, []

    def snap(self, offset: int) -> int:
        """Move an offset that falls inside a fence to just after that fence."""
        inside = annotation_at(self.annotations, offset)
        return inside.end if inside is not None else offset


def _context_score(text: str, start: int, end: int, comment: ReviewComment) -> int:
    score = 0
    if comment.before:
        window = _normalize(text[max(0, start - len(comment.before) - 20):start])
        before = _normalize(comment.before)
        score += sum(2 for word in before.split() if len(word) > 3 and word in window)
        if before[-CONTEXT_MATCH_CHARS:] and before[-CONTEXT_MATCH_CHARS:] in window:
            score += 5
    if comment.after:
        window = _normalize(text[end:end + len(comment.after) + 20])
        after = _normalize(comment.after)
        score += sum(2 for word in after.split() if len(word) > 3 and word in window)
        if after[:CONTEXT_MATCH_CHARS] and after[:CONTEXT_MATCH_CHARS] in window:
            score += 5
    return score


def _hint_offset(text: str, comment: ReviewComment) -> Optional[int]:
    """Proportional position of the comment in the annotated text, from extraction offsets."""
    if comment.doc_position is None or not comment.doc_length:
        return None
    proportion = min(max(comment.doc_position / comment.doc_length, 0.0), 1.0)
    return int(proportion * len(text))


def _pick_span(index: _AnchorIndex, spans: List[Tuple[int, int]], comment: ReviewComment,
               used: set) -> Tuple[int, int]:
    """Choose among several matches: context first, then hint proximity, then document order."""
    if len(spans) == 1:
        return spans[0]
    fresh = [s for s in spans if s[1] not in used] or spans
    hint = _hint_offset(index.text, comment)

    def rank(span):
        distance = abs(span[0] - hint) if hint is not None else 0
        return (-_context_score(index.text, span[0], span[1], comment), distance, span[0])

    return min(fresh, key=rank)


def locate_anchor(index: _AnchorIndex, comment: ReviewComment,
                  used: set) -> Tuple[Optional[int], str]:
    """
    Find where a comment belongs in the annotated text.

    Strategies, in order: exact anchor, whitespace/case-normalized anchor,
    anchor in the accepted reading of the annotations, fixed-length anchor
    prefix, before/after context.

    Returns:
        (insert offset or None, strategy name)
    """
    anchor = comment.anchor.strip()
    if anchor:
        spans = index.span_matches(anchor)
        if spans:
            return _pick_span(index, spans, comment, used)[1], 'anchor'

        prefix = _normalize(anchor)[:ANCHOR_PREFIX_CHARS]
        if len(prefix) < len(_normalize(anchor)):
            _, spans = index.view_matches(prefix)
            if spans:
                return _pick_span(index, spans, comment, used)[1], 'prefix'

    before = _normalize(comment.before)[-CONTEXT_MATCH_CHARS:]
    after = _normalize(comment.after)[:CONTEXT_MATCH_CHARS]
    for _, (normalized, offsets) in index.views:
        if before:
            hit = normalized.rfind(before)
            if hit != -1:
                end = offsets[hit + len(before) - 1] + 1
                if after:
                    after_hit = normalized.find(after, hit + len(before))
                    if after_hit != -1 and offsets[after_hit] - end <= ANCHOR_SEARCH_WINDOW:
                        return end, 'context-both'
                return end, 'context-before'
        if after:
            hit = normalized.find(after)
            if hit != -1:
                return offsets[hit], 'context-after'

    return None, 'not-found'


def _paragraph_end(text: str, offset: int) -> int:
    """End of the paragraph containing ``offset`` (before its blank-line separator)."""
    idx = text.find('\n\n', offset)
    if idx == -1:
        return len(text.rstrip())
    return idx


def anchor_comments(text: str, comments: List[ReviewComment],
                    verbose: bool = False) -> Tuple[str, List[str], int]:
    """
    Insert comment fences into already-annotated text.

    All insertion points are computed against the same snapshot and then
    applied in descending order. Comments sharing an insertion point keep
    their input order.

    Args:
        text: Annotated text
        comments: Extracted reviewer comments
        verbose: Print placement details

    Returns:
        (text with comments, warnings, number of comments without an anchor)
    """
    if not comments:
        return text, [], 0

    index = _AnchorIndex(text)
    used: set = set()
    placements = []
    warnings = []
    unanchored = 0

    for order, comment in enumerate(comments):
        markup = render_comment_markup(comment.author, comment.text, comment.resolved)
        offset, strategy = locate_anchor(index, comment, used)

        if offset is None:
            unanchored += 1
            hint = _hint_offset(text, comment)
            offset = _paragraph_end(text, index.snap(hint) if hint is not None else len(text))
            offset = index.snap(offset)
            paragraph = text.count('\n\n', 0, offset) + 1
            warnings.append(
                f"Comment by {comment.author or 'Anonymous'} ('{format_text_preview(comment.text)}'): "
                f"anchor not found ('{format_text_preview(comment.anchor)}'), "
                f"placed at end of paragraph {paragraph}"
            )
            placements.append((offset, order, markup))
            continue

        offset = index.snap(offset)
        used.add(offset)
        if verbose:
            print(f"  [Anchor] {strategy}: '{format_text_preview(comment.anchor)}' "
                  f"-> offset {offset} ({comment.author})")
        placements.append((offset, order, markup))

    for offset, _, markup in sorted(placements, reverse=True):
        text = text[:offset] + markup + text[offset:]

    return text, warnings, unanchored


# ============================================================
# Visible comments
# ============================================================

def extract_visible_comments(revised: str) -> Tuple[str, List[ReviewComment]]:
    """
    Pull ``[Author: note]`` comments a reviewer typed into the body text.

    Each note is removed from the text (with the blanks before it) and
    returned as a comment placed by the text around it. Link text such as
    ``[label](url)`` and citation keys such as ``[@key: p. 4]`` are left alone.

    Args:
        revised: Text extracted from the reviewer's document

    Returns:
        (text without the notes, comments in document order)

    Example:
        "The cat [Bob: which one?] sat." ->
        ("The cat sat.", [ReviewComment(author="Bob", text="which one?", before="The cat")])
    """
    parts: List[str] = []
    comments: List[ReviewComment] = []
    cursor = 0
    length = 0
    for match in VISIBLE_COMMENT_PATTERN.finditer(revised):
        parts.append(revised[cursor:match.start()])
        length += match.start() - cursor
        cursor = match.end()
        preceding = ''.join(parts[-3:])[-VISIBLE_CONTEXT_CHARS:]
        following = VISIBLE_COMMENT_PATTERN.sub('', revised[cursor:cursor + VISIBLE_CONTEXT_CHARS])
        comments.append(ReviewComment(
            author=match.group(1).strip(),
            text=match.group(2).strip(),
            before=preceding,
            after=following,
            doc_position=length,
        ))
    if not comments:
        return revised, []

    parts.append(revised[cursor:])
    clean = ''.join(parts)
    for comment in comments:
        comment.doc_length = len(clean)
    return clean, comments


# ============================================================
# Entry point
# ============================================================

def convert(original: str, revised: str, comments: Optional[List[ReviewComment]] = None,
            reviewer: str = '', verbose: bool = False, markdown: bool = True,
            visible_comments: bool = True) -> ConvertResult:
    """
    Turn a reviewer's text into inline annotations against the original.

    Args:
        original: Plain-text source
        revised: Text extracted from the reviewer's document
        comments: Extracted reviewer comments to anchor
        reviewer: Name recorded on each change
        verbose: Print progress
        markdown: Ignore Markdown syntax the reviewer's document no longer shows
        visible_comments: Also turn ``[Author: note]`` text into comments

    Returns:
        ConvertResult with annotated text, changes, stats and warnings
    """
    comments = list(comments or [])
    if visible_comments:
        revised, notes = extract_visible_comments(revised)
        comments.extend(notes)
        if verbose and notes:
            print(f"  [Comments] {len(notes)} visible comment(s) in reviewer text")

    changes = diff_changes(original, revised, reviewer=reviewer, markdown=markdown)
    annotated = render_changes(original, changes)
    if verbose:
        print(f"  [Diff] {len(changes)} change(s) from {reviewer or 'reviewer'}")

    annotated, warnings, unanchored = anchor_comments(annotated, comments, verbose=verbose)

    stats = change_stats(changes)
    stats[COMMENT] = len(comments)
    stats['unanchored'] = unanchored
    return ConvertResult(annotated_text=annotated, changes=changes, stats=stats, warnings=warnings)
