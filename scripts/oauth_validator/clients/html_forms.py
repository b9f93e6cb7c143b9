"""
HTML Form Helpers
=================

Minimal element tree over the standard library tokenizer, plus the form
lookup and form-to-request conversion the flow driver needs to submit
approval pages the way a browser would.
"""

from ..exceptions import FormError

from html.parser import HTMLParser
from typing import Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests

# Elements that never have children
VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class Element:
    """A parsed HTML element (or the document root)."""

    def __init__(self, tag: str, attrs: Optional[List[Tuple[str, Optional[str]]]] = None,
                 parent: Optional["Element"] = None):
        self.tag = tag
        self.attrs = list(attrs or [])
        self.parent = parent
        self.children: List["Element"] = []

    def __repr__(self) -> str:
        return f"<Element {self.tag} {dict(self.attrs)!r}>"


class _TreeBuilder(HTMLParser):

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = Element("#document")
        self._current = self.root

    def handle_starttag(self, tag, attrs):
        element = Element(tag, attrs, self._current)
        self._current.children.append(element)
        if tag not in VOID_ELEMENTS:
            self._current = element

    def handle_startendtag(self, tag, attrs):
        self._current.children.append(Element(tag, attrs, self._current))

    def handle_endtag(self, tag):
        # Close the nearest open element with this tag; stray end tags are ignored
        node = self._current
        while node is not self.root and node.tag != tag:
            node = node.parent
        if node is not self.root:
            self._current = node.parent


def parse_html(text: str) -> Element:
    """Parse an HTML document into an element tree rooted at ``#document``."""
    builder = _TreeBuilder()
    builder.feed(text)
    builder.close()
    return builder.root


def iter_elements(node: Element) -> Iterator[Element]:
    """Yield the descendants of ``node`` in document order."""
    for child in node.children:
        yield child
        yield from iter_elements(child)


def get_elements_by_tag_name(node: Element, tag: str) -> List[Element]:
    tag = tag.lower()
    return [element for element in iter_elements(node) if element.tag == tag]


def has_attr(node: Element, name: str) -> bool:
    return any(key == name for key, _ in node.attrs)


def get_attr(node: Element, name: str, default: Optional[str] = None) -> Optional[str]:
    for key, value in node.attrs:
        if key == name:
            return value if value is not None else ""
    return default


def find_forms(text: str) -> List[Element]:
    """Return every <form> element of an HTML document."""
    return get_elements_by_tag_name(parse_html(text), "form")


def _control_type(control: Element) -> str:
    default = "submit" if control.tag == "button" else "text"
    return (get_attr(control, "type") or default).lower()


def form_fields(form: Element, submit_button: Optional[Element] = None) -> List[Tuple[str, str]]:
    """
    Collect the (name, value) pairs a browser would submit for ``form``.

    Args:
        form: The <form> element
        submit_button: Submit control to activate (default: the first one)

    Returns:
        Ordered list of name/value pairs
    """
    fields = []
    for control in iter_elements(form):
        if control.tag not in ("input", "button"):
            continue
        name = get_attr(control, "name")
        if not name:
            continue

        control_type = _control_type(control)
        if control_type in ("submit", "image"):
            if submit_button is None:
                submit_button = control
            if control is not submit_button:
                continue
        elif control_type in ("button", "reset", "file"):
            continue
        elif control_type in ("checkbox", "radio") and not has_attr(control, "checked"):
            continue

        fields.append((name, get_attr(control, "value", "")))
    return fields


def request_from_form(form: Element, current_url: str,
                      headers: Optional[Dict[str, str]] = None,
                      submit_button: Optional[Element] = None) -> requests.Request:
    """
    Build the request that submitting ``form`` would send.

    Args:
        form: The <form> element
        current_url: URL of the page the form came from
        headers: Extra headers for the request
        submit_button: Submit control to activate (default: the first one)

    Returns:
        Unprepared requests.Request

    Raises:
        FormError: If the form method is neither GET nor POST
    """
    method = (get_attr(form, "method") or "GET").upper()
    action = get_attr(form, "action") or current_url
    parts = urlsplit(urljoin(current_url, action))

    fields = []
    if method == "GET":
        # Existing query parameters are kept when submitting via GET
        fields = parse_qsl(parts.query, keep_blank_values=True)
    fields.extend(form_fields(form, submit_button))

    headers = dict(headers or {})
    if method == "GET":
        url = urlunsplit(parts._replace(query=urlencode(fields), fragment=""))
        return requests.Request("GET", url, headers=headers)
    if method == "POST":
        url = urlunsplit(parts._replace(fragment=""))
        headers["Content-Type"] = FORM_CONTENT_TYPE
        return requests.Request("POST", url, headers=headers, data=urlencode(fields))

    raise FormError(f"unknown method: {method}")
