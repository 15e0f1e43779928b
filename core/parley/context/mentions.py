"""
Detection of ``@path`` file mentions in user text.
"""

import re
from dataclasses import dataclass
from typing import Iterator

from parley.context.files import FileResolver


@dataclass
class Mention:
    """A file reference found in a message."""
    original_token: str  # Includes the leading @
    reference_path: str
    start_offset: int
    end_offset: int  # Exclusive
    is_resolvable: bool


class MentionParser:
    """
    Finds ``@some/file.ext`` tokens, left to right and non-overlapping.

    A token needs at least one extension segment, so ``@notes`` is not a
    mention. ``@`` is not a path character, which splits ``@a.md@b.md`` into
    two mentions.
    """

    MENTION_PATTERN = re.compile(r"@([\w\-./\\]+\.\w+)")

    def __init__(self, resolver: FileResolver):
        self.resolver = resolver

    def iter_mentions(self, text: str) -> Iterator[Mention]:
        for match in self.MENTION_PATTERN.finditer(text or ""):
            path = match.group(1)
            yield Mention(
                original_token=match.group(0),
                reference_path=path,
                start_offset=match.start(),
                end_offset=match.end(),
                is_resolvable=self.resolver.is_known_path(path),
            )

    def parse_mentions(self, text: str) -> list[Mention]:
        return list(self.iter_mentions(text))
