"""
ID generation utilities for Clarity.

Every entity gets a short prefixed identifier:
- Notes: note_xxx
- Tags: tag_xxx
- Projects: proj_xxx
- Extracted items: dec_xxx, act_xxx, com_xxx, unr_xxx
- People: person_xxx
- URLs: url_xxx
- Digests: digest_xxx
"""

from uuid import uuid4


def _generate(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_note_id() -> str:
    """
    Generate unique Note ID.

    Returns:
        ID in format "note_xxx" where xxx is 12 hex characters
    """
    return _generate("note")


def generate_tag_id() -> str:
    """Generate unique Tag ID (tag_xxx)."""
    return _generate("tag")


def generate_project_id() -> str:
    """Generate unique Project ID (proj_xxx)."""
    return _generate("proj")


def generate_item_id(kind: str) -> str:
    """
    Generate an ID for an extracted item.

    Args:
        kind: One of "decision", "action", "commitment", "unresolved"

    Returns:
        ID with a kind-specific prefix (dec_, act_, com_, unr_)

    Raises:
        ValueError: If kind is unknown
    """
    prefixes = {
        "decision": "dec",
        "action": "act",
        "commitment": "com",
        "unresolved": "unr",
    }
    if kind not in prefixes:
        raise ValueError(f"Unknown item kind: {kind}")
    return _generate(prefixes[kind])


def generate_person_id() -> str:
    """Generate unique MentionedPerson ID (person_xxx)."""
    return _generate("person")


def generate_url_id() -> str:
    """Generate unique ExtractedURL ID (url_xxx)."""
    return _generate("url")


def generate_digest_id() -> str:
    """Generate unique DailyDigest ID (digest_xxx)."""
    return _generate("digest")
