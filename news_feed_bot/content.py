"""Article text extraction for summarization."""

import re

import requests
from bs4 import BeautifulSoup
from readability import Document

PAGE_TIMEOUT = 30
USER_AGENT = "Mozilla/5.0 (compatible; News-Feed-Bot/1.0)"

_REDUNDANT_NEWLINES = re.compile(r"\n{3,}")


class ContentExtractionError(Exception):
    """The article page could not be downloaded or yielded no text."""


def cleanup_text(text: str) -> str:
    """Collapse runs of three or more newlines into a single newline."""
    return _REDUNDANT_NEWLINES.sub("\n", text)


def html_to_text(content: str) -> str:
    """Plain text of an HTML fragment, one line per block element."""
    if not content:
        return ""
    if "<" not in content and ">" not in content:
        return content.strip()

    soup = BeautifulSoup(content, "html.parser")
    for script in soup(["script", "style"]):
        script.decompose()

    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(lines).strip()


def extract_readable_text(html: str) -> str:
    """Main readable content of a full page, without navigation and boilerplate."""
    try:
        main_html = Document(html).summary(html_partial=True)
    except Exception as e:
        raise ContentExtractionError(f"readability failed: {e}") from e
    return html_to_text(main_html)


def fetch_article_text(url: str, timeout: float = PAGE_TIMEOUT) -> str:
    """Download an article page and extract its readable text.

    Raises:
        ContentExtractionError: If the page cannot be fetched or parsed
    """
    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as e:
        raise ContentExtractionError(f"failed to fetch {url}: {e}") from e

    return extract_readable_text(response.text)
