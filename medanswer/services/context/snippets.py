"""Snippet and highlight extraction for retrieved chunks."""

from medanswer.services.context.chunks import Highlight, tokenize

SNIPPET_LENGTH = 200
MIN_HIGHLIGHT_TOKEN = 3
WORD_BOUNDARY_WINDOW = 20


def generate_snippet(content: str, query: str, length: int = SNIPPET_LENGTH) -> str:
    """Return a window of ``length`` chars centered on the first query term.

    The window start is moved forward to a word boundary when one is close,
    and truncated edges are marked with ``...``.
    """
    if len(content) <= length:
        return content

    lowered = content.lower()
    positions = [lowered.find(token) for token in tokenize(query)]
    positions = [p for p in positions if p >= 0]
    if not positions:
        return content[:length] + "..."

    position = min(positions)
    start = max(0, position - length // 2)
    end = min(len(content), start + length)
    if end - start < length:
        start = max(0, end - length)

    if start > 0:
        space = content.find(" ", start)
        if space != -1 and space - start < WORD_BOUNDARY_WINDOW:
            start = space + 1

    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def generate_highlights(content: str, query: str) -> list[Highlight]:
    """Mark every occurrence of each query token of 3+ characters."""
    lowered = content.lower()
    highlights: list[Highlight] = []
    for token in dict.fromkeys(tokenize(query)):
        if len(token) < MIN_HIGHLIGHT_TOKEN:
            continue
        index = lowered.find(token)
        while index != -1:
            end = index + len(token)
            highlights.append(Highlight(start=index, end=end, text=content[index:end]))
            index = lowered.find(token, index + 1)
    highlights.sort(key=lambda h: h.start)
    return highlights
