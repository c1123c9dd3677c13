"""
Markdown escaping for values interpolated into legacy Markdown messages.
Emails, nicknames and API-provided names routinely contain ``_`` or ``*``,
which would otherwise break the message or make Telegram reject it.
"""

from typing import Any

# Characters that need escaping in legacy Markdown
MARKDOWN_ESCAPE_CHARS = r"_*`["


def escape_markdown(text: Any) -> str:
    """
    Escape special characters for Telegram legacy Markdown format
    Used when parse_mode='Markdown' is specified
    """
    if text is None or text == "":
        return ""

    text = str(text)
    for char in MARKDOWN_ESCAPE_CHARS:
        text = text.replace(char, f"\\{char}")
    return text
