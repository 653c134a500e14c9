"""Extract @mentions from record bodies."""

import re
from typing import List

MAX_NAME_LENGTH = 64

# `@` must start the text or follow whitespace/an opening bracket, so e-mail
# addresses never count as mentions.
MENTION_PATTERN = re.compile(
    r'(?<![^\s(\[>])@(?:"([^"\n]{1,%d})"|(\w[\w.\-]*))' % MAX_NAME_LENGTH
)


def parse_mentions(body: str) -> List[str]:
    """
    Find mentioned user names in a body of text.

    Supports `@"Quoted Name"` and `@bareName`. Names are de-duplicated
    case-insensitively, first occurrence wins.

    Args:
        body: Record body

    Returns:
        Mentioned names in order of appearance
    """
    if not body:
        return []

    names = []
    seen = set()
    for match in MENTION_PATTERN.finditer(body):
        quoted, bare = match.groups()
        if quoted is not None:
            name = quoted.strip()
        else:
            # Sentence punctuation is not part of a bare name.
            name = bare.rstrip('.-')
        if not name or len(name) > MAX_NAME_LENGTH:
            continue

        key = name.lower()
        if key not in seen:
            seen.add(key)
            names.append(name)

    return names
