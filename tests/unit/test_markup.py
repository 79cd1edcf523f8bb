"""Unit tests for openbrowser.browser.markup: HTML to text/markdown and page parts."""

from __future__ import annotations

from openbrowser.browser.markup import (
    extract_images,
    extract_links,
    extract_metadata,
    html_to_markdown,
    html_to_text,
    parse,
    render_content,
)
from openbrowser.models.page import ContentFormat

ARTICLE = """
<html>
  <head>
    <title>Article</title>
    <meta name="description" content="A test article">
    <meta property="og:title" content="OG Article">
    <style>body { color: red; }</style>
  </head>
  <body>
    <h1>Main Title</h1>
    <p>First paragraph.</p>
    <script>var hidden = 1;</script>
    <ul><li>one</li><li>two</li></ul>
    <ol><li>alpha</li><li>beta</li></ol>
    <blockquote>quoted</blockquote>
    <pre><code>x = 1</code></pre>
    <hr>
    <div><a href="/about">About us</a><img src="/logo.png" alt="Logo"></div>
  </body>
</html>
"""


class TestHtmlToText:
    def test_visible_text_only(self) -> None:
        text = html_to_text(ARTICLE)
        assert "Main Title" in text
        assert "First paragraph." in text
        assert "hidden" not in text
        assert "color: red" not in text

    def test_no_blank_lines(self) -> None:
        lines = html_to_text(ARTICLE).split("\n")
        assert all(line.strip() == line and line for line in lines)


class TestHtmlToMarkdown:
    def test_block_elements(self) -> None:
        md = html_to_markdown(ARTICLE)
        assert "# Main Title" in md
        assert "First paragraph." in md
        assert "- one\n- two" in md
        assert "1. alpha\n2. beta" in md
        assert "> quoted" in md
        assert "```\nx = 1\n```" in md
        assert "---" in md

    def test_inline_elements_inside_containers(self) -> None:
        md = html_to_markdown(ARTICLE)
        assert "[About us](/about)" in md
        assert "![Logo](/logo.png)" in md

    def test_heading_levels(self) -> None:
        assert html_to_markdown("<body><h3>Deep</h3></body>") == "### Deep"

    def test_nested_lists_indented(self) -> None:
        html = "<body><ul><li>Fruit<ul><li>apple</li><li>pear</li></ul></li><li>Veg<ol><li>kale</li></ol></li></ul></body>"
        assert html_to_markdown(html) == "- Fruit\n  - apple\n  - pear\n- Veg\n  1. kale"

    def test_emphasis(self) -> None:
        md = html_to_markdown("<body><strong>bold</strong> <em>it</em></body>")
        assert "**bold**" in md
        assert "*it*" in md

    def test_empty_link_skipped(self) -> None:
        assert html_to_markdown('<body><a href="/x"></a></body>') == ""


class TestRenderContent:
    def test_html_passthrough(self) -> None:
        assert render_content("<p>x</p>", ContentFormat.HTML) == "<p>x</p>"

    def test_text(self) -> None:
        assert render_content("<body><p>x</p></body>", ContentFormat.TEXT) == "x"

    def test_markdown(self) -> None:
        assert render_content("<body><h2>x</h2></body>", ContentFormat.MARKDOWN) == "## x"


class TestPageParts:
    def test_links(self) -> None:
        links = extract_links(parse(ARTICLE))
        assert [(l.url, l.text) for l in links] == [("/about", "About us")]

    def test_images(self) -> None:
        images = extract_images(parse(ARTICLE))
        assert [(i.url, i.alt) for i in images] == [("/logo.png", "Logo")]

    def test_metadata_name_and_property(self) -> None:
        meta = extract_metadata(parse(ARTICLE))
        assert meta == {"description": "A test article", "og:title": "OG Article"}

    def test_anchor_without_href_ignored(self) -> None:
        assert extract_links(parse("<a>no href</a>")) == []
