"""
CSP-safe element classifier.
Infers a semantic tag, interactivity and locator strategies for an element
using only attribute reads through the driver. Nothing is evaluated in the page.
"""
import logging
from typing import Callable, Dict, NamedTuple, Optional

from treemeta.utils.schema import ElementAnalysis, LocatorStrategies, SemanticData

logger = logging.getLogger(__name__)


CORE_ATTRIBUTES = ("id", "class", "style", "title", "lang", "dir", "hidden")

FORM_ATTRIBUTES = (
    "type", "name", "value", "placeholder", "required", "disabled",
    "readonly", "checked", "selected", "multiple", "accept",
    "autocomplete", "autofocus", "min", "max", "step", "pattern",
    "maxlength", "minlength", "size", "rows", "cols",
)

LINK_MEDIA_ATTRIBUTES = (
    "href", "src", "alt", "target", "rel", "download",
    "srcset", "sizes", "loading", "decoding",
)

SEMANTIC_ATTRIBUTES = ("role", "tabindex", "contenteditable", "draggable", "dropzone", "onclick")

ARIA_ATTRIBUTES = (
    "aria-label", "aria-labelledby", "aria-describedby", "aria-expanded",
    "aria-hidden", "aria-live", "aria-atomic", "aria-relevant",
    "aria-busy", "aria-checked", "aria-disabled", "aria-selected",
    "aria-pressed", "aria-invalid", "aria-required", "aria-readonly",
)

TEST_ATTRIBUTES = (
    "data-testid", "data-test", "data-cy", "data-automation",
    "data-track", "data-analytics", "data-component", "data-module",
)

CUSTOM_ATTRIBUTES = ("for", "action", "method", "enctype", "novalidate")

ALL_ATTRIBUTES = (
    CORE_ATTRIBUTES
    + FORM_ATTRIBUTES
    + LINK_MEDIA_ATTRIBUTES
    + SEMANTIC_ATTRIBUTES
    + ARIA_ATTRIBUTES
    + TEST_ATTRIBUTES
    + CUSTOM_ATTRIBUTES
)

TEST_ID_ATTRIBUTES = ("data-testid", "data-test", "data-cy")

INTERACTIVE_TAGS = {"a", "button", "input", "select", "textarea", "label"}
INTERACTIVE_ROLES = {
    "button", "link", "textbox", "checkbox", "radio", "tab",
    "menuitem", "option", "slider", "switch",
}
FORM_FIELD_TAGS = {"input", "select", "textarea"}
MEDIA_TAGS = {"img", "video", "audio"}
CONTAINER_TAGS = {"div", "section", "article", "nav", "header", "footer", "main", "aside"}
# Tags whose type attribute is worth putting into selectors
TYPED_TAGS = {"input", "button"}

MAX_TEXT_LENGTH = 500
TEXT_LOCATOR_LENGTH = 30
FAILED_READ_WARNING_THRESHOLD = 10

FALLBACK_TAG = "div"
BASE_CONFIDENCE = 0.5


Attributes = Dict[str, str]


class TagRule(NamedTuple):
    """A predicate over the attribute map and the tag it implies."""
    predicate: Callable[[Attributes], bool]
    tag: str


def _role_is(*roles: str) -> Callable[[Attributes], bool]:
    return lambda attrs: attrs.get("role") in roles


def _src_with_media(kind: str) -> Callable[[Attributes], bool]:
    return lambda attrs: bool(attrs.get("src")) and (
        attrs.get("type") == kind or kind in attrs.get("accept", "")
    )


# Evaluated top to bottom, first match wins. Explicit links/images/forms
# outrank form-field inference, which outranks ARIA roles, then media.
TAG_RULES = (
    # High-specificity attributes
    TagRule(lambda a: bool(a.get("href")), "a"),
    TagRule(lambda a: bool(a.get("src")) and "alt" in a, "img"),
    TagRule(lambda a: bool(a.get("src")) and bool(a.get("srcset") or a.get("loading")), "img"),
    TagRule(lambda a: bool(a.get("action") or a.get("method") or a.get("enctype")), "form"),
    TagRule(lambda a: bool(a.get("for")), "label"),

    # Form fields
    TagRule(lambda a: a.get("type") in ("submit", "button"), "button"),
    TagRule(lambda a: bool(a.get("rows") or a.get("cols")), "textarea"),
    TagRule(lambda a: "multiple" in a and bool(a.get("size")), "select"),
    TagRule(lambda a: "selected" in a, "option"),
    TagRule(lambda a: bool(a.get("type") or a.get("placeholder")) or "value" in a, "input"),

    # ARIA roles
    TagRule(_role_is("button"), "button"),
    TagRule(_role_is("link"), "a"),
    TagRule(_role_is("textbox"), "input"),
    TagRule(_role_is("checkbox", "radio"), "input"),
    TagRule(_role_is("listbox", "combobox"), "select"),
    TagRule(_role_is("option"), "option"),
    TagRule(_role_is("heading"), "h1"),
    TagRule(_role_is("list"), "ul"),
    TagRule(_role_is("listitem"), "li"),
    TagRule(_role_is("table"), "table"),
    TagRule(_role_is("row"), "tr"),
    TagRule(_role_is("cell", "gridcell"), "td"),
    TagRule(_role_is("columnheader", "rowheader"), "th"),
    TagRule(_role_is("navigation"), "nav"),
    TagRule(_role_is("main"), "main"),
    TagRule(_role_is("banner"), "header"),
    TagRule(_role_is("complementary"), "aside"),
    TagRule(_role_is("contentinfo"), "footer"),

    # Media
    TagRule(_src_with_media("video"), "video"),
    TagRule(_src_with_media("audio"), "audio"),
    TagRule(lambda a: bool(a.get("src")), "img"),

    TagRule(lambda a: True, FALLBACK_TAG),
)

# (attribute, tags, confidence) for high-specificity matches
SPECIFIC_MATCHES = (
    ("href", {"a"}, 0.95),
    ("src", {"img"}, 0.9),
    ("type", TYPED_TAGS, 0.85),
    ("action", {"form"}, 0.9),
    ("for", {"label"}, 0.85),
)


def _non_empty(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def _quote(value: str) -> str:
    """Attribute value as a double-quoted CSS string."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _css_identifier(value: str) -> str:
    """Escape an id or class name for use after `#` or `.`."""
    escaped = []
    for i, char in enumerate(value):
        leading_digit = char.isdigit() and (i == 0 or (i == 1 and value[0] == "-"))
        if (char.isalnum() or char in ("-", "_")) and not leading_digit:
            escaped.append(char)
        else:
            escaped.append(f"\\{ord(char):x} ")
    return "".join(escaped)


def _xpath_literal(value: str) -> str:
    """XPath 1.0 string literal; there is no escape syntax, so mixed quotes need concat()."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    pieces = [f'"{piece}"' for piece in value.split('"')]
    return "concat(" + ", '\"', ".join(pieces) + ")"


def _split_classes(class_attr: Optional[str]):
    return [c for c in (class_attr or "").split() if c]


class ElementDetector:
    """Rule-based element classification from observable attributes."""

    def __init__(self, attributes=ALL_ATTRIBUTES, rules=TAG_RULES):
        self.attributes = tuple(attributes)
        self.rules = tuple(rules)

    async def extract_attributes(self, element, index: int = 0) -> Attributes:
        """
        Read every allow-listed attribute with an individual driver call.

        A failed read is skipped. Many failures on one element usually mean
        CSP interference, so that case is logged once.

        Args:
            element: Playwright ElementHandle
            index: Sibling index, used in log messages

        Returns:
            Only the attributes that are present on the element
        """
        found: Attributes = {}
        failed = 0

        for name in self.attributes:
            try:
                value = await element.get_attribute(name)
            except Exception:
                failed += 1
                continue
            if value is not None:
                found[name] = value

        if failed > FAILED_READ_WARNING_THRESHOLD:
            logger.warning(
                f"Element {index}: {failed} attribute extractions failed, {len(found)} succeeded"
            )

        return found

    def detect_element_tag(self, attributes: Attributes) -> str:
        """First rule whose predicate matches decides the tag."""
        for rule in self.rules:
            if rule.predicate(attributes):
                return rule.tag
        return FALLBACK_TAG

    def is_interactive_element(self, tag_name: str, attributes: Attributes) -> bool:
        if tag_name in INTERACTIVE_TAGS:
            return True
        if attributes.get("role") in INTERACTIVE_ROLES:
            return True
        return (
            "tabindex" in attributes
            or "onclick" in attributes
            or attributes.get("contenteditable") == "true"
        )

    def generate_semantic_data(self, tag_name: str, attributes: Attributes, text_content: str) -> SemanticData:
        has_test_id = any(attributes.get(name) for name in TEST_ID_ATTRIBUTES)
        has_aria_label = bool(attributes.get("aria-label") or attributes.get("aria-labelledby"))
        has_role = bool(attributes.get("role"))

        return SemanticData(
            has_text=_non_empty(text_content),
            has_id=_non_empty(attributes.get("id")),
            has_class=bool(attributes.get("class")),
            has_test_id=has_test_id,
            has_aria_label=has_aria_label,
            has_role=has_role,
            is_accessible=has_role or has_aria_label or has_test_id,
            is_form_field=tag_name in FORM_FIELD_TAGS,
            is_interactive=self.is_interactive_element(tag_name, attributes),
            is_media=tag_name in MEDIA_TAGS,
            is_container=tag_name in CONTAINER_TAGS,
        )

    def generate_locator_strategies(self, tag_name: str, attributes: Attributes, text_content: str) -> LocatorStrategies:
        """
        Locators ordered by reliability: id, test id, role, text, label,
        then generic CSS and XPath.
        """
        strategies = LocatorStrategies()

        element_id = attributes.get("id")
        if _non_empty(element_id):
            strategies.by_id = f"#{_css_identifier(element_id.strip())}"

        for name in TEST_ID_ATTRIBUTES:
            if attributes.get(name):
                strategies.by_test_id = f"[{name}={_quote(attributes[name])}]"
                break

        if attributes.get("role"):
            strategies.by_role = attributes["role"]

        text = (text_content or "").strip()
        if text:
            strategies.by_text = text[:TEXT_LOCATOR_LENGTH]

        label = attributes.get("aria-label") or attributes.get("aria-labelledby")
        if label:
            strategies.by_label = label

        strategies.css = self.generate_css_selector(tag_name, attributes)
        strategies.xpath = self.generate_xpath_selector(tag_name, attributes)
        return strategies

    def generate_css_selector(self, tag_name: str, attributes: Attributes) -> str:
        element_id = attributes.get("id")
        if _non_empty(element_id):
            return f"#{_css_identifier(element_id.strip())}"

        selector = tag_name

        classes = _split_classes(attributes.get("class"))[:2]
        if classes:
            selector += "".join(f".{_css_identifier(c)}" for c in classes)

        if attributes.get("role"):
            selector += f"[role={_quote(attributes['role'])}]"

        if attributes.get("type") and tag_name in TYPED_TAGS:
            selector += f"[type={_quote(attributes['type'])}]"

        return selector

    def generate_xpath_selector(self, tag_name: str, attributes: Attributes) -> str:
        element_id = attributes.get("id")
        if _non_empty(element_id):
            return f"//*[@id={_xpath_literal(element_id.strip())}]"
        if attributes.get("data-testid"):
            return f"//{tag_name}[@data-testid={_xpath_literal(attributes['data-testid'])}]"
        if attributes.get("role"):
            return f"//{tag_name}[@role={_xpath_literal(attributes['role'])}]"
        if attributes.get("type") and tag_name in TYPED_TAGS:
            return f"//{tag_name}[@type={_xpath_literal(attributes['type'])}]"
        return f"//{tag_name}"

    def calculate_detection_confidence(self, tag_name: str, attributes: Attributes) -> float:
        """
        0.5 for a bare fallback, 0.8-0.95 for specific matches,
        +0.05 each for id and class, capped at 1.0.
        """
        confidence = BASE_CONFIDENCE

        for attribute, tags, score in SPECIFIC_MATCHES:
            if attributes.get(attribute) and tag_name in tags:
                confidence = max(confidence, score)

        if attributes.get("role"):
            confidence = max(confidence, 0.8)

        if _non_empty(attributes.get("id")):
            confidence += 0.05
        if attributes.get("class"):
            confidence += 0.05

        return round(min(confidence, 1.0), 2)

    async def read_text(self, element, index: int = 0) -> str:
        """Trimmed text content, truncated; empty on failure."""
        try:
            text = await element.text_content() or ""
        except Exception as e:
            logger.warning(f"Could not get textContent for element {index}: {e}")
            return ""
        text = text.strip()
        if len(text) > MAX_TEXT_LENGTH:
            text = text[:MAX_TEXT_LENGTH] + "..."
        return text

    async def analyze_element(self, element, index: int = 0) -> ElementAnalysis:
        """
        Full classification of one element handle.

        Never raises: an unexpected failure yields a degraded record
        (div, no attributes or locators, confidence 0, error set).
        """
        try:
            attributes = await self.extract_attributes(element, index)
            tag_name = self.detect_element_tag(attributes)
            text_content = await self.read_text(element, index)

            return ElementAnalysis(
                tag_name=tag_name,
                attributes=attributes,
                text_content=text_content,
                semantic_data=self.generate_semantic_data(tag_name, attributes, text_content),
                locator_strategies=self.generate_locator_strategies(tag_name, attributes, text_content),
                detection_confidence=self.calculate_detection_confidence(tag_name, attributes),
            )
        except Exception as e:
            logger.error(f"Error analyzing element {index}: {e}")
            return ElementAnalysis(
                tag_name=FALLBACK_TAG,
                detection_confidence=0,
                error=str(e),
            )
