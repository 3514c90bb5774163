#!/usr/bin/env python3
"""
ABOUTME: XML utility functions for reviewer document extraction
ABOUTME: Namespaces, tag helpers and sanitization for XML-incompatible characters
"""

NS = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'w14': 'http://schemas.microsoft.com/office/word/2010/wordml',
    'w15': 'http://schemas.microsoft.com/office/word/2012/wordml',
}

# Characters removed by sanitize_xml_string: 0x00-0x08, 0x0B, 0x0C, 0x0E-0x1F
_ILLEGAL_XML_CHARS = ''.join(chr(c) for c in range(0x20) if c not in (0x09, 0x0A, 0x0D))
_ILLEGAL_XML_TABLE = str.maketrans('', '', _ILLEGAL_XML_CHARS)


def qname(tag: str) -> str:
    """
    Expand a prefixed tag name to Clark notation.

    Example:
        qname('w:p') -> '{http://schemas.openxmlformats.org/wordprocessingml/2006/main}p'
    """
    prefix, local = tag.split(':', 1)
    return f'{{{NS[prefix]}}}{local}'


def sanitize_xml_string(text: str) -> str:
    """
    Remove control characters that are illegal in XML 1.0.

    XML 1.0 allows: #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF.
    Text copied out of reviewer documents occasionally carries the others
    (vertical tab from soft breaks, form feed from page breaks).

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text. Returns input unchanged if not a non-empty string.
    """
    if not text or not isinstance(text, str):
        return text
    return text.translate(_ILLEGAL_XML_TABLE)
