"""
Entity-tag parsing for the `If-Match` and `If-None-Match` request headers.

The grammar follows RFC 7232 Section 2.3:

    entity-tag = [ weak ] opaque-tag
    weak       = %x57.2F ; "W/", case-sensitive
    opaque-tag = DQUOTE *etagc DQUOTE
    etagc      = %x21 / %x23-7E / obs-text
"""

from __future__ import annotations

from typing import List, Optional, Union

from cacheheaders._core.models import ETag, ETagStrength

WILDCARD = "*"


def is_etagc(c: str) -> bool:
    """
    Check if character is allowed inside an opaque-tag.

    Examples:
        >>> is_etagc('a')
        True
        >>> is_etagc('"')
        False
        >>> is_etagc(' ')
        False
    """
    if not c:
        return False
    b = ord(c)
    return b == 0x21 or (0x23 <= b <= 0x7E) or 0x80 <= b <= 0xFF


def parse_entity_tag(raw: str) -> tuple[int, Optional[ETag]]:
    """
    Parse a single entity-tag from the start of `raw`.

    Returns:
        Tuple of (eaten, etag) where:
        - eaten: number of characters consumed, or -1 on failure
        - etag: the parsed tag, or None on failure

    Examples:
        >>> parse_entity_tag('"abc"')
        (5, ETag(value='abc', strength=<ETagStrength.STRONG: 'strong'>))
        >>> parse_entity_tag('W/"abc", "def"')[0]
        7
        >>> parse_entity_tag('abc')
        (-1, None)
    """
    strength = ETagStrength.STRONG
    i = 0
    if raw.startswith("W/"):
        strength = ETagStrength.WEAK
        i = 2

    if i >= len(raw) or raw[i] != '"':
        return -1, None

    i += 1
    start = i
    while i < len(raw):
        c = raw[i]
        if c == '"':
            return i + 1, ETag(raw[start:i], strength)
        if not is_etagc(c):
            return -1, None
        i += 1

    # Reached end without finding closing quote
    return -1, None


def parse_entity_tag_list(values: Optional[List[str]]) -> Optional[List[Union[ETag, str]]]:
    """
    Parse the field values of an `If-Match` or `If-None-Match` header.

    The result is either the list of entity-tags or `["*"]`. Any syntax error
    makes the whole header invalid, and invalid headers are reported as `None`
    so callers can treat them as absent.

    Examples:
        >>> [str(tag) for tag in parse_entity_tag_list(['"a", W/"b"'])]
        ['"a"', 'W/"b"']
        >>> parse_entity_tag_list(['*'])
        ['*']
        >>> parse_entity_tag_list(['"a", *']) is None
        True
        >>> parse_entity_tag_list(['"a" junk']) is None
        True
    """
    if not values:
        return None

    raw = ",".join(values).strip()
    if raw == WILDCARD:
        return [WILDCARD]

    tags: List[Union[ETag, str]] = []
    i = 0
    length = len(raw)
    while i < length:
        # Skip whitespace and empty list elements
        while i < length and raw[i] in (" ", "\t", ","):
            i += 1
        if i >= length:
            break

        eaten, tag = parse_entity_tag(raw[i:])
        if eaten == -1 or tag is None:
            return None
        tags.append(tag)
        i += eaten

        # After a tag only whitespace and a comma may follow
        while i < length and raw[i] in (" ", "\t"):
            i += 1
        if i < length and raw[i] != ",":
            return None

    return tags or None


