"""Keyword matching for spoken or typed movement commands."""

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Checked in order; the first command with a matching keyword wins.
COMMAND_KEYWORDS: Dict[str, List[str]] = {
    "forward": ["forward", "go forward", "move forward", "ahead", "go ahead"],
    "backward": ["back", "backward", "reverse", "go back", "move back"],
    "left": ["left", "turn left", "go left"],
    "right": ["right", "turn right", "go right"],
    "stop": ["stop", "halt", "freeze", "brake", "hold"],
}


def parse_voice_command(text: Optional[str]) -> Optional[str]:
    """
    Find the movement command in a recognized phrase.

    Args:
        text: Recognized or typed text

    Returns:
        "forward", "backward", "left", "right", "stop", or None if no
        keyword matched
    """
    if not text:
        return None
    lowered = text.lower().strip()
    for command, keywords in COMMAND_KEYWORDS.items():
        for keyword in keywords:
            if keyword in lowered:
                logger.debug(f"Matched command: {command} (keyword: {keyword})")
                return command
    logger.debug(f"No command matched for: {lowered!r}")
    return None
