"""HTML post-processing for scraped pages.

Everything here is pure: it works on a markup string already fetched by the
browser, so it is shared by ``scrape``, ``crawl`` and ``extract`` and can be
tested without Playwright.
"""

from __future__ import annotations

from bs4 import BeautifulSoup, Tag

from openbrowser.models.page import ContentFormat, Image, Link

_NOISE_TAGS = ("script", "style", "noscript")
_HEADINGS = {f"h{level}": "#" * level for level in range(1, 7)}


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def html_to_text(html: str) -> str:
    """Visible text with one non-empty, trimmed line per text block."""
    soup = parse(html)
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def html_to_markdown(html: str) -> str:
    """Render the document body as markdown.

    Walks the element children of ``<body>`` recursively.  Headings,
    paragraphs, links, images, lists, block quotes, code, emphasis and rules
    map to their markdown forms; any other element is transparent and its
    element children are rendered in its place.
    """
    soup = parse(html)
    root = soup.body or soup
    parts: list[str] = []
    for child in _element_children(root):
        _convert(child, parts, 0)
    return "".join(parts).strip()


def _element_children(tag: Tag) -> list[Tag]:
    return [child for child in tag.children if isinstance(child, Tag)]


def _convert(node: Tag, out: list[str], list_level: int) -> None:
    name = node.name
    text = node.get_text().strip()

    if name in _HEADINGS:
        out.append(f"{_HEADINGS[name]} {text}\n\n")
    elif name == "p":
        out.append(f"{text}\n\n")
    elif name == "a":
        if text:
            out.append(f"[{text}]({node.get('href', '')})")
    elif name == "img":
        out.append(f"![{node.get('alt', '')}]({node.get('src', '')})\n")
    elif name in ("ul", "ol"):
        items = [li for li in _element_children(node) if li.name == "li"]
        for index, li in enumerate(items, start=1):
            prefix = f"{index}. " if name == "ol" else "- "
            label = " ".join(
                "".join(
                    str(child) if not isinstance(child, Tag) else child.get_text()
                    for child in li.children
                    if not (isinstance(child, Tag) and child.name in ("ul", "ol"))
                ).split()
            )
            out.append("  " * list_level + prefix + label + "\n")
            for sub in _element_children(li):
                if sub.name in ("ul", "ol"):
                    _convert(sub, out, list_level + 1)
        if list_level == 0:
            out.append("\n")
    elif name == "blockquote":
        for line in text.split("\n"):
            out.append(f"> {line}\n")
        out.append("\n")
    elif name == "code":
        out.append(f"`{node.get_text()}`")
    elif name == "pre":
        code_tag = node.find("code")
        code = code_tag.get_text() if code_tag else ""
        out.append(f"```\n{code or node.get_text()}\n```\n\n")
    elif name in ("strong", "b"):
        out.append(f"**{node.get_text()}**")
    elif name in ("em", "i"):
        out.append(f"*{node.get_text()}*")
    elif name == "hr":
        out.append("---\n\n")
    else:
        for child in _element_children(node):
            _convert(child, out, list_level)


def render_content(html: str, fmt: ContentFormat) -> str:
    """Content for ``Page.content`` in the requested format."""
    if fmt == ContentFormat.TEXT:
        return html_to_text(html)
    if fmt == ContentFormat.MARKDOWN:
        return html_to_markdown(html)
    return html


def extract_links(soup: BeautifulSoup) -> list[Link]:
    return [
        Link(url=a["href"], text=a.get_text().strip())
        for a in soup.find_all("a", href=True)
    ]


def extract_images(soup: BeautifulSoup) -> list[Image]:
    return [
        Image(url=img["src"], alt=img.get("alt", ""))
        for img in soup.find_all("img", src=True)
    ]


def extract_metadata(soup: BeautifulSoup) -> dict[str, str]:
    """``<meta name|property=... content=...>`` pairs; later tags win."""
    metadata: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        content = meta.get("content", "")
        for key_attr in ("name", "property"):
            key = meta.get(key_attr)
            if key:
                metadata[key] = content
    return metadata
