"""Schema-driven structured extraction from HTML.

A schema maps output field names to either a bare CSS selector (text of the
first match) or a spec dict::

    {
        "title": "h1",
        "price": {"selector": ".price", "type": "text"},
        "logo": {"selector": "img.logo", "type": "attribute", "attribute": "src"},
        "tags": {"selector": ".tag", "type": "list"},
        "specs": {"selector": "table.specs", "type": "table"},
    }
"""

from __future__ import annotations

import logging
from typing import Any

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from openbrowser.browser.markup import parse
from openbrowser.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)

EXTRACT_TYPES = ("text", "html", "attribute", "attr", "list", "table")


def extract_fields(html: str, schema: dict[str, Any]) -> dict[str, Any]:
    """Apply *schema* to *html* and return one value per usable field.

    Fields whose spec is neither a selector string nor a dict with a
    ``selector`` key are skipped.

    Raises:
        InvalidRequestError: If a field's selector is not valid CSS.
    """
    soup = parse(html)
    result: dict[str, Any] = {}

    for key, spec in schema.items():
        if isinstance(spec, str):
            spec = {"selector": spec}
        if not isinstance(spec, dict) or not spec.get("selector"):
            logger.debug("Skipping extract field %s: no selector", key)
            continue
        try:
            result[key] = _extract_field(soup, spec)
        except SelectorSyntaxError as exc:
            raise InvalidRequestError(f"invalid selector for field {key!r}: {exc}") from exc

    return result


def _extract_field(soup: BeautifulSoup, spec: dict[str, Any]) -> Any:
    selector = spec["selector"]
    extract_type = spec.get("type") or "text"
    if extract_type == "html":
        el = soup.select_one(selector)
        return el.decode_contents() if el else ""
    if extract_type in ("attribute", "attr"):
        el = soup.select_one(selector)
        value = el.get(spec.get("attribute", "")) if el else None
        return " ".join(value) if isinstance(value, list) else (value or "")
    if extract_type == "list":
        return [el.get_text().strip() for el in soup.select(selector)]
    if extract_type == "table":
        table = soup.select_one(selector)
        return extract_table(table) if table else []
    return _first_text(soup, selector)


def _first_text(soup: BeautifulSoup, selector: str) -> str:
    el = soup.select_one(selector)
    return el.get_text().strip() if el else ""


def extract_table(table: Tag) -> list[dict[str, str]]:
    """Rows of *table* as dicts keyed by header text.

    Headers come from ``thead th``; without a ``thead`` the first row's cells
    are the headers and that row is not emitted as data.  Cells beyond the
    header count are dropped, as are rows with no data cells.
    """
    headers = [th.get_text().strip() for th in table.select("thead th")]
    rows = table.select("tbody tr")
    all_rows = table.find_all("tr")

    if not headers and all_rows:
        header_row = all_rows[0]
        headers = [cell.get_text().strip() for cell in header_row.find_all(["th", "td"])]
        if not rows:
            rows = all_rows[1:]
        else:
            rows = [tr for tr in rows if tr is not header_row]
    elif not rows:
        rows = [tr for tr in all_rows if tr.find_parent("thead") is None]

    records: list[dict[str, str]] = []
    for tr in rows:
        cells = tr.find_all("td")
        record = {headers[i]: td.get_text().strip() for i, td in enumerate(cells) if i < len(headers)}
        if record:
            records.append(record)
    return records
