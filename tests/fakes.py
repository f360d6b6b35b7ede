"""
Mock Playwright handles for tests that must not launch a browser.
"""
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock


def make_element(attributes: Optional[Dict[str, str]] = None, text: str = "",
                 children: Optional[List] = None, box: Optional[Dict] = None,
                 visible: bool = True, enabled: bool = True,
                 failing_attributes=()) -> MagicMock:
    """
    Build an ElementHandle stand-in.

    Args:
        attributes: Attribute map returned by get_attribute()
        text: Value for text_content()
        children: Direct children returned for ':scope > *'
        box: bounding_box() result (None means no layout box)
        failing_attributes: Attribute names whose read raises, or "*" for all
    """
    attributes = dict(attributes or {})
    children = list(children or [])

    def get_attribute(name):
        if failing_attributes == "*" or name in failing_attributes:
            raise Exception(f"read of {name} blocked")
        return attributes.get(name)

    def query_selector_all(selector):
        assert selector == ":scope > *"
        return list(children)

    el = MagicMock()
    el.get_attribute = AsyncMock(side_effect=get_attribute)
    el.text_content = AsyncMock(return_value=text)
    el.bounding_box = AsyncMock(return_value=box)
    el.is_visible = AsyncMock(return_value=visible)
    el.is_enabled = AsyncMock(return_value=enabled)
    el.query_selector_all = AsyncMock(side_effect=query_selector_all)
    el.children = children
    return el


def make_chain(levels: int) -> MagicMock:
    """A single path of nested elements; the deepest sits at depth `levels`."""
    node = make_element({"class": f"level-{levels}"})
    for level in range(levels - 1, -1, -1):
        node = make_element({"class": f"level-{level}"}, children=[node])
    return node


def make_page(body) -> MagicMock:
    """Page whose query_selector('body') returns `body`."""
    page = MagicMock()
    page.query_selector = AsyncMock(return_value=body)
    return page
