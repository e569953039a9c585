"""Accessor-chain parsing and walking for reference expressions.

    "user.addresses[0].city"      -> ["user", "addresses", "0", "city"]
    "headers['content-type']"     -> ["headers", "content-type"]

Walking never raises: any missing segment yields None.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

# Pseudo-attribute giving the size of a list, string or mapping
LENGTH_SEGMENT = "length"


def parse_path(path: str) -> list[str]:
    """Split a dotted path with optional bracket accessors into segments.

    Quotes around bracket content are stripped. An unterminated bracket turns the rest
    of the path into one literal segment.
    """
    segments: list[str] = []
    current = ""
    i = 0

    while i < len(path):
        char = path[i]
        if char == ".":
            if current:
                segments.append(current)
            current = ""
        elif char == "[":
            if current:
                segments.append(current)
            current = ""

            closing = path.find("]", i + 1)
            if closing == -1:
                current = path[i:]
                break

            content = path[i + 1 : closing]
            if len(content) >= 2 and content[0] == content[-1] and content[0] in "\"'":
                content = content[1:-1]
            segments.append(content)
            i = closing
        else:
            current += char
        i += 1

    if current:
        segments.append(current)
    return segments


def walk_path(root: Any, segments: Sequence[str]) -> Any:
    """Follow `segments` from `root`, returning None as soon as a step is missing."""
    current = root

    for segment in segments:
        if current is None:
            return None

        if isinstance(current, BaseModel):
            current = current.model_dump()

        if isinstance(current, Mapping):
            if segment in current:
                current = current[segment]
            elif segment == LENGTH_SEGMENT:
                current = len(current)
            else:
                return None
        elif isinstance(current, (list, tuple)):
            if segment == LENGTH_SEGMENT:
                current = len(current)
                continue
            if not segment.isdigit():
                return None
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        elif isinstance(current, str) and segment == LENGTH_SEGMENT:
            current = len(current)
        else:
            return None

    return current
