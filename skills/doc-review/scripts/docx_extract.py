#!/usr/bin/env python3
"""
ABOUTME: Extracts plain text and comments from reviewer DOCX documents
ABOUTME: Body text via python-docx/lxml, comments.xml and commentsExtended.xml via defusedxml
"""

import re
import sys
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from defusedxml import ElementTree as ET
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn

from markup_edit.common import ReviewComment
from xml_utils import NS, qname, sanitize_xml_string

PARAGRAPH_SEPARATOR = '\n\n'
CELL_SEPARATOR = ' | '

# Context captured around each comment anchor
CONTEXT_MAX_CHARS = 150
CONTEXT_FALLBACK_CHARS = 80

SENTENCE_START_PATTERN = re.compile(r'[.!?]\s+(?=[A-Z][^.!?]*$)')
SENTENCE_END_PATTERN = re.compile(r'[.!?]\s')

# (marker kind, comment id, offset into the piece's text)
Mark = Tuple[str, str, int]
Piece = Tuple[str, List[Mark]]


class DocxExtractionError(ValueError):
    """Reviewer document missing, unreadable or not a .docx package"""


@dataclass
class CommentAnchor:
    """Where a comment range sits in the extracted text"""
    anchor: str
    before: str
    after: str
    doc_position: int
    doc_length: int


# ============================================================
# Body text
# ============================================================

def _paragraph_piece(p_elem) -> Piece:
    """
    Visible text of one paragraph plus comment range markers.

    Deleted tracked text lives in w:delText and is never collected, so the
    result is the reading a reviewer sees with changes accepted.
    """
    parts: List[str] = []
    marks: List[Mark] = []
    length = 0
    for elem in p_elem.iter():
        tag = elem.tag
        chunk = ''
        if tag == qn('w:t'):
            chunk = sanitize_xml_string(elem.text or '')
        elif tag == qn('w:tab') and elem.getparent().tag == qn('w:r'):
            chunk = '\t'
        elif tag in (qn('w:br'), qn('w:cr')):
            chunk = '\n'
        elif tag == qn('w:noBreakHyphen'):
            chunk = '-'
        elif tag == qn('w:commentRangeStart'):
            marks.append(('start', elem.get(qn('w:id')), length))
        elif tag == qn('w:commentRangeEnd'):
            marks.append(('end', elem.get(qn('w:id')), length))
        if chunk:
            parts.append(chunk)
            length += len(chunk)
    return ''.join(parts), marks


def _join_pieces(pieces: List[Piece], separator: str, keep_empty: bool = False) -> Piece:
    """Concatenate pieces, shifting their marker offsets into the joined text."""
    parts: List[str] = []
    marks: List[Mark] = []
    length = 0
    for idx, (text, piece_marks) in enumerate(pieces):
        if not keep_empty and not text.strip():
            marks.extend((kind, cid, length) for kind, cid, _ in piece_marks)
            continue
        if parts or (keep_empty and idx > 0):
            parts.append(separator)
            length += len(separator)
        marks.extend((kind, cid, length + offset) for kind, cid, offset in piece_marks)
        parts.append(text)
        length += len(text)
    return ''.join(parts), marks


def _cell_is_merge_continuation(tc) -> bool:
    tc_pr = tc.find(qn('w:tcPr'))
    if tc_pr is None:
        return False
    vmerge = tc_pr.find(qn('w:vMerge'))
    return vmerge is not None and vmerge.get(qn('w:val')) != 'restart'


def _table_piece(tbl) -> Piece:
    """Each row becomes one 'cell | cell' line; vertically merged continuations are blank."""
    rows = []
    for tr in tbl.findall(qn('w:tr')):
        cells = []
        for tc in tr.findall(qn('w:tc')):
            if _cell_is_merge_continuation(tc):
                cells.append(('', []))
                continue
            cell_text, cell_marks = _join_pieces(_block_pieces(tc), ' ')
            cells.append((cell_text.replace('\n', ' '), cell_marks))
        rows.append(_join_pieces(cells, CELL_SEPARATOR, keep_empty=True))
    return _join_pieces(rows, '\n')


def _block_pieces(container) -> List[Piece]:
    pieces: List[Piece] = []
    for child in container.iterchildren():
        if child.tag == qn('w:p'):
            pieces.append(_paragraph_piece(child))
        elif child.tag == qn('w:tbl'):
            pieces.append(_table_piece(child))
        elif child.tag == qn('w:sdt'):
            content = child.find(qn('w:sdtContent'))
            if content is not None:
                pieces.extend(_block_pieces(content))
        elif child.tag in (qn('w:ins'), qn('w:customXml')):
            # Paragraph-level wrappers around inserted or tagged blocks
            pieces.extend(_block_pieces(child))
    return pieces


def _open_document(docx_path: str):
    path = Path(docx_path)
    if not path.exists():
        raise DocxExtractionError(f"File not found: {docx_path}")
    try:
        return Document(str(path))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as e:
        raise DocxExtractionError(
            f"Invalid Word document (not a valid .docx file): {docx_path}\n{e}"
        ) from e


def _extract_body(docx_path: str) -> Piece:
    doc = _open_document(docx_path)
    return _join_pieces(_block_pieces(doc.element.body), PARAGRAPH_SEPARATOR)


def extract_text(docx_path: str) -> str:
    """
    Plain text of a reviewer document.

    Paragraphs are separated by blank lines, table rows become
    'cell | cell' lines, deleted tracked text is dropped.

    Raises:
        DocxExtractionError: missing or invalid document
    """
    text, _ = _extract_body(docx_path)
    return text


# ============================================================
# Comments
# ============================================================

def _node_text(elem) -> str:
    return ''.join(t.text or '' for t in elem.iter(qname('w:t')))


def _resolved_para_ids(zf: zipfile.ZipFile) -> Dict[str, bool]:
    """paraId -> done flag from word/commentsExtended.xml (absent in older files)."""
    if 'word/commentsExtended.xml' not in zf.namelist():
        return {}
    root = ET.parse(zf.open('word/commentsExtended.xml')).getroot()
    flags = {}
    for entry in root.iter(qname('w15:commentEx')):
        para_id = entry.get(qname('w15:paraId'))
        if para_id:
            flags[para_id] = entry.get(qname('w15:done')) in ('1', 'true')
    return flags


def extract_comments(docx_path: str) -> List[ReviewComment]:
    """
    Comments from word/comments.xml, without anchors.

    Returns:
        ReviewComment list in document order (empty when the file has none)

    Raises:
        DocxExtractionError: missing or invalid document
    """
    path = Path(docx_path)
    if not path.exists():
        raise DocxExtractionError(f"File not found: {docx_path}")

    comments: List[ReviewComment] = []
    try:
        with zipfile.ZipFile(path, 'r') as zf:
            if 'word/comments.xml' not in zf.namelist():
                return comments
            root = ET.parse(zf.open('word/comments.xml')).getroot()
            done_flags = _resolved_para_ids(zf)
    except zipfile.BadZipFile as e:
        raise DocxExtractionError(
            f"Invalid Word document (not a valid .docx file): {docx_path}\n{e}"
        ) from e
    except ET.ParseError as e:
        raise DocxExtractionError(f"Failed to read comments from {path.name}: {e}") from e

    for node in root.findall('w:comment', NS):
        paragraphs = node.findall('.//w:p', NS)
        text = '\n'.join(_node_text(p) for p in paragraphs) if paragraphs else _node_text(node)
        # The done flag is keyed by the comment's last paragraph
        last_para_id = paragraphs[-1].get(qname('w14:paraId')) if paragraphs else None
        comments.append(ReviewComment(
            author=node.get(qname('w:author')) or 'Unknown',
            text=sanitize_xml_string(text.strip()),
            comment_id=node.get(qname('w:id')) or '',
            date=(node.get(qname('w:date')) or '')[:10],
            resolved=bool(last_para_id and done_flags.get(last_para_id)),
        ))
    return comments


def _context_before(text: str, position: int) -> str:
    window = text[max(0, position - CONTEXT_MAX_CHARS):position]
    match = SENTENCE_START_PATTERN.search(window)
    if match:
        return window[match.end():].strip()
    return window[-CONTEXT_FALLBACK_CHARS:].strip()


def _context_after(text: str, position: int) -> str:
    window = text[position:position + CONTEXT_MAX_CHARS]
    match = SENTENCE_END_PATTERN.search(window)
    if match:
        return window[:match.start() + 1].strip()
    return window[:CONTEXT_FALLBACK_CHARS].strip()


def _anchors_from_marks(text: str, marks: List[Mark]) -> Dict[str, CommentAnchor]:
    starts: Dict[str, int] = {}
    ends: Dict[str, int] = {}
    for kind, cid, offset in marks:
        target = starts if kind == 'start' else ends
        target.setdefault(cid, offset)

    anchors: Dict[str, CommentAnchor] = {}
    for cid, start in starts.items():
        end = ends.get(cid)
        if end is None:
            print(f"Warning: Comment {cid}: missing range end marker", file=sys.stderr)
            continue
        end = max(end, start)
        anchors[cid] = CommentAnchor(
            anchor=text[start:end].strip(),
            before=_context_before(text, start),
            after=_context_after(text, end),
            doc_position=start,
            doc_length=len(text),
        )
    return anchors


def extract_comment_anchors(docx_path: str) -> Dict[str, CommentAnchor]:
    """
    Anchor text and context of every comment range, keyed by comment id.

    Offsets refer to the text returned by ``extract_text``.
    """
    text, marks = _extract_body(docx_path)
    return _anchors_from_marks(text, marks)


def extract_review(docx_path: str, include_comments: bool = True) -> Tuple[str, List[ReviewComment]]:
    """
    Text and anchored comments of a reviewer document in one pass.

    Returns:
        (plain text, comments with anchor/before/after/doc_position filled)
    """
    text, marks = _extract_body(docx_path)
    if not include_comments:
        return text, []

    anchors = _anchors_from_marks(text, marks)
    comments = extract_comments(docx_path)
    for comment in comments:
        anchor: Optional[CommentAnchor] = anchors.get(comment.comment_id)
        if anchor is None:
            continue
        comment.anchor = anchor.anchor
        comment.before = anchor.before
        comment.after = anchor.after
        comment.doc_position = anchor.doc_position
        comment.doc_length = anchor.doc_length
    return text, comments
