"""
Parsing of the assistant's semi-structured replies.

The system prompt asks the model to answer in emoji-headed sections. This
module walks the reply line by line and sorts the lines under each heading
into typed lists.
"""
import re
from typing import Dict, List, Optional, Tuple

from farm_assistant.schemas.responses import ParsedResponse, Recommendations

# (section, emoji, heading); checked in this order
SECTION_MARKERS: List[Tuple[str, str, str]] = [
    ("follow_up", "❓", "Follow-up Questions"),
    ("related", "🔗", "Related Topics"),
    ("immediate", "⚡", "Immediate Actions"),
    ("short_term", "📅", "Next Steps"),
    ("long_term", "🌾", "Long-term Planning"),
    ("main", "🌱", "Main Advice"),
]

COLLECTED_SECTIONS = ("follow_up", "related", "immediate", "short_term", "long_term")

# Numbered markers need trailing whitespace so "2.5 kg" keeps its quantity
BULLET_PATTERN = re.compile(r"^(?:[-•*]|\d+[.)](?=\s))\s*")


def _detect_section(line: str) -> Optional[str]:
    for section, emoji, heading in SECTION_MARKERS:
        if emoji in line or heading in line:
            return section
    return None


def _clean_item(text: str) -> str:
    return BULLET_PATTERN.sub("", text.strip()).strip()


def _inline_text(heading_line: str) -> str:
    """Text written on the heading line itself, after the colon."""
    if ":" not in heading_line:
        return ""
    return _clean_item(heading_line.split(":", 1)[1].strip().lstrip("*"))


def parse_ai_response(response: str) -> ParsedResponse:
    sections: Dict[str, List[str]] = {name: [] for name in COLLECTED_SECTIONS}
    current_section = ""

    for line in response.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue

        section = _detect_section(trimmed)
        if section:
            current_section = section
            inline = _inline_text(trimmed)
            if inline and section in sections:
                sections[section].append(inline)
            continue

        if current_section in sections:
            item = _clean_item(trimmed)
            if item:
                sections[current_section].append(item)

    recommendations = None
    if sections["immediate"] or sections["short_term"] or sections["long_term"]:
        recommendations = Recommendations(
            immediate=sections["immediate"],
            short_term=sections["short_term"],
            long_term=sections["long_term"],
        )

    return ParsedResponse(
        advice=response,
        follow_up_questions=sections["follow_up"] or None,
        recommendations=recommendations,
        related_topics=sections["related"] or None,
    )
