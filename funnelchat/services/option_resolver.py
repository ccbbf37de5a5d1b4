"""Map free-text user input onto one of a block's declared options.

Precedence:
    1. exact match (case-insensitive, trimmed)
    2. substring match in either direction
    3. 1-based numeric index, only when no textual match was found

Within a tier the first option in declared order wins.
"""

import re
from typing import Optional

from funnelchat.services.funnel_graph import FunnelBlock, FunnelOption

NUMERIC_PATTERN = re.compile(r"^\d+$")


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def resolve_option(text: Optional[str], block: FunnelBlock) -> Optional[FunnelOption]:
    """Resolve user input to an option of block, or None if nothing matches."""
    normalized = normalize(text)
    if not normalized or not block.options:
        return None

    for option in block.options:
        if normalize(option.text) == normalized:
            return option

    for option in block.options:
        option_text = normalize(option.text)
        if not option_text:
            continue
        if normalized in option_text or option_text in normalized:
            return option

    if NUMERIC_PATTERN.match(normalized):
        index = int(normalized)
        if 1 <= index <= len(block.options):
            return block.options[index - 1]

    return None


def format_numbered_options(block: Optional[FunnelBlock]) -> str:
    """Render options as '1. text' lines. Empty string when there are none."""
    if block is None or not block.options:
        return ""
    return "\n".join(f"{i}. {option.text}" for i, option in enumerate(block.options, start=1))
