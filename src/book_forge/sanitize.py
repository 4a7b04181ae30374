"""Reversible sanitization of stored text.

Text is HTML-escaped before it is written to storage and unescaped before it
is embedded into a new prompt.

Example:
    >>> sanitizer = HtmlSanitizer()
    >>> sanitizer.sanitize('She said "hi" & left')
    'She said &quot;hi&quot; &amp; left'
    >>> sanitizer.unsanitize(sanitizer.sanitize("<b>"))
    '<b>'
"""

import html


class HtmlSanitizer:
    """Escape HTML-significant characters and quotes."""

    def sanitize(self, text: str) -> str:
        return html.escape(text, quote=True)

    def unsanitize(self, text: str) -> str:
        return html.unescape(text)
