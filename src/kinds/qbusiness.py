"""Pieces shared by the Amazon Q Business kinds."""

from typing import Tuple

# Application, index, data source and retriever IDs
ID_PATTERN = "^[a-zA-Z0-9][a-zA-Z0-9-]{35}$"


def parse_composite_id(handle_id: str, noun: str) -> Tuple[str, str]:
    """
    Split an ``application_id/<noun>_id`` handle.

    Raises:
        ValueError: The handle does not have exactly two non-empty parts.
    """
    parts = handle_id.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"invalid {noun} ID: {handle_id}")
    return parts[0], parts[1]
