"""Allow-list sanitizer for article HTML taken from third-party pages.

Dangerous elements are dropped with their content, unknown elements are
unwrapped so their text survives, attributes are kept only when listed for
the tag, and link/media URLs are made absolute against the page URL.
"""

from __future__ import annotations

from urllib.parse import urljoin

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, ProcessingInstruction, Tag

DANGEROUS_TAGS: frozenset[str] = frozenset(
    {
        "script",
        "style",
        "link",
        "meta",
        "iframe",
        "embed",
        "object",
        "form",
        "input",
        "button",
        "select",
        "textarea",
        "noscript",
        "template",
        "svg",
    }
)

ALLOWED_TAGS: frozenset[str] = frozenset(
    {
        "h1", "h2", "h3", "h4", "h5", "h6",
        "p", "br", "hr", "blockquote", "pre", "code",
        "ul", "ol", "li", "dl", "dt", "dd",
        "em", "strong", "b", "i", "u", "s", "mark", "small", "sup", "sub",
        "abbr", "cite", "dfn", "kbd", "samp", "var", "time",
        "a", "img", "figure", "figcaption", "picture", "source", "video", "audio",
        "table", "caption", "colgroup", "col", "thead", "tbody", "tr", "th", "td",
        "details", "summary",
        "div", "span", "article", "section", "aside", "header", "footer", "main",
    }
)

ALLOWED_ATTRIBUTES: dict[str, frozenset[str]] = {
    "a": frozenset({"href"}),
    "img": frozenset({"src", "alt", "title"}),
    "source": frozenset({"src", "srcset", "type", "media"}),
    "video": frozenset({"src", "poster", "width", "height"}),
    "audio": frozenset({"src"}),
    "time": frozenset({"datetime"}),
    "abbr": frozenset({"title"}),
    "dfn": frozenset({"title"}),
    "td": frozenset({"colspan", "rowspan"}),
    "th": frozenset({"colspan", "rowspan", "scope"}),
    "col": frozenset({"span"}),
    "colgroup": frozenset({"span"}),
}

MEDIA_URL_ATTRIBUTES: dict[str, tuple[str, ...]] = {
    "img": ("src",),
    "source": ("src",),
    "video": ("src", "poster"),
    "audio": ("src",),
}

UNSAFE_HREF_SCHEMES: tuple[str, ...] = ("javascript:", "data:", "vbscript:")
ABSOLUTE_HREF_PREFIXES: tuple[str, ...] = ("http://", "https://", "mailto:", "#")
ABSOLUTE_MEDIA_PREFIXES: tuple[str, ...] = ("http://", "https://")

_STRIPPED_NODE_TYPES = (Comment, CData, Declaration, Doctype, ProcessingInstruction)
# Browsers drop these before reading a URL scheme.
_URL_IGNORED_CHARACTERS = str.maketrans("", "", "\t\n\r")
_C0_CONTROL_OR_SPACE = "".join(chr(code) for code in range(0x21))


def sanitize_html(html_fragment: str, base_url: str) -> str:
    soup = BeautifulSoup(html_fragment, "html.parser", multi_valued_attributes=None)

    for node in soup.find_all(string=lambda text: isinstance(text, _STRIPPED_NODE_TYPES)):
        node.extract()

    for element in soup.find_all(sorted(DANGEROUS_TAGS)):
        if not element.decomposed:
            element.decompose()

    for element in soup.find_all(True):
        if element.name not in ALLOWED_TAGS:
            element.unwrap()
            continue
        _clean_attributes(element, base_url)

    return soup.decode()


def resolve_srcset(srcset: str, base_url: str) -> str:
    entries: list[str] = []
    for raw_entry in srcset.split(","):
        parts = raw_entry.split()
        if not parts:
            continue
        parts[0] = _resolve_media_url(parts[0], base_url)
        entries.append(" ".join(parts))
    return ", ".join(entries)


def _clean_attributes(element: Tag, base_url: str) -> None:
    allowed = ALLOWED_ATTRIBUTES.get(element.name, frozenset())
    element.attrs = {name: value for name, value in element.attrs.items() if name in allowed}

    if element.name == "a":
        _clean_anchor_href(element, base_url)

    for attribute in MEDIA_URL_ATTRIBUTES.get(element.name, ()):
        value = element.get(attribute)
        if isinstance(value, str) and value:
            element[attribute] = _resolve_media_url(value, base_url)

    if element.name == "source":
        srcset = element.get("srcset")
        if isinstance(srcset, str) and srcset:
            element["srcset"] = resolve_srcset(srcset, base_url)


def _clean_anchor_href(element: Tag, base_url: str) -> None:
    href = element.get("href")
    if not isinstance(href, str) or not href:
        return
    if _scheme_prefix(href).startswith(UNSAFE_HREF_SCHEMES):
        del element["href"]
        return
    if href.startswith(ABSOLUTE_HREF_PREFIXES):
        return
    resolved = _join(href, base_url)
    if resolved is not None:
        element["href"] = resolved


def _resolve_media_url(value: str, base_url: str) -> str:
    if _scheme_prefix(value).startswith("data:"):
        return value
    if value.startswith(ABSOLUTE_MEDIA_PREFIXES):
        return value
    resolved = _join(value, base_url)
    return resolved if resolved is not None else value


def _scheme_prefix(value: str) -> str:
    return value.translate(_URL_IGNORED_CHARACTERS).strip(_C0_CONTROL_OR_SPACE).lower()


def _join(value: str, base_url: str) -> str | None:
    try:
        return urljoin(base_url, value.strip())
    except ValueError:
        return None
