from __future__ import annotations

import pytest
from bs4 import BeautifulSoup

from backend.feedproxy.services.html_sanitizer import resolve_srcset, sanitize_html

BASE_URL = "https://example.com/post"


def _soup(fragment: str) -> BeautifulSoup:
    return BeautifulSoup(fragment, "html.parser")


def test_dangerous_elements_are_removed_with_their_content() -> None:
    cleaned = sanitize_html(
        "<p>Intro</p><script>alert('x')</script><style>p{}</style>"
        "<form><input name='q'><button>Go</button></form>"
        "<svg><text>vector</text></svg><iframe src='https://evil.test'></iframe><p>Outro</p>",
        BASE_URL,
    )

    assert cleaned == "<p>Intro</p><p>Outro</p>"


def test_unknown_elements_are_unwrapped_in_place() -> None:
    cleaned = sanitize_html(
        "<p>Hello <custom-tag>big <font color='red'>wide</font></custom-tag> world</p>",
        BASE_URL,
    )

    assert cleaned == "<p>Hello big wide world</p>"


def test_attributes_outside_the_per_tag_allow_list_are_stripped() -> None:
    cleaned = sanitize_html(
        '<p class="lead" style="color:red" onclick="steal()">Text</p>'
        '<td colspan="2" bgcolor="red">cell</td>'
        '<img src="https://cdn.example.com/a.png" alt="A" onerror="x()" width="10">',
        BASE_URL,
    )
    soup = _soup(cleaned)

    assert soup.p is not None and soup.p.attrs == {}
    assert soup.td is not None and soup.td.attrs == {"colspan": "2"}
    assert soup.img is not None
    assert soup.img.attrs == {"src": "https://cdn.example.com/a.png", "alt": "A"}


@pytest.mark.parametrize(
    "href",
    [
        "javascript:alert(1)",
        "JavaScript:alert(1)",
        " javascript:alert(1)",
        "java\tscript:alert(1)",
        "data:text/html;base64,PHNjcmlwdD4=",
        "vbscript:msgbox(1)",
    ],
)
def test_script_schemes_are_removed_from_anchor_href(href: str) -> None:
    cleaned = sanitize_html(f'<a href="{href}">click me</a>', BASE_URL)
    anchor = _soup(cleaned).a

    assert anchor is not None
    assert "href" not in anchor.attrs
    assert anchor.get_text() == "click me"


def test_relative_links_and_media_are_made_absolute() -> None:
    cleaned = sanitize_html(
        '<a href="/about">About</a><a href="#notes">Notes</a>'
        '<a href="mailto:me@example.com">Mail</a>'
        '<img src="/img.png"><video src="clip.mp4" poster="/poster.jpg"></video>',
        BASE_URL,
    )
    soup = _soup(cleaned)
    anchors = soup.find_all("a")

    assert [anchor["href"] for anchor in anchors] == [
        "https://example.com/about",
        "#notes",
        "mailto:me@example.com",
    ]
    assert 'src="https://example.com/img.png"' in cleaned
    assert soup.video is not None
    assert soup.video["src"] == "https://example.com/clip.mp4"
    assert soup.video["poster"] == "https://example.com/poster.jpg"


def test_data_uris_on_media_are_preserved() -> None:
    pixel = "data:image/gif;base64,R0lGODlhAQABAAAAACw="
    cleaned = sanitize_html(f'<img src="{pixel}" alt="pixel">', BASE_URL)
    image = _soup(cleaned).img

    assert image is not None
    assert image["src"] == pixel


def test_srcset_entries_keep_descriptors() -> None:
    resolved = resolve_srcset("/small.jpg 480w, https://cdn.example.com/big.jpg 1080w,", BASE_URL)

    assert resolved == "https://example.com/small.jpg 480w, https://cdn.example.com/big.jpg 1080w"


def test_picture_source_srcset_is_resolved() -> None:
    cleaned = sanitize_html(
        '<picture><source srcset="/a.webp 1x, /a@2x.webp 2x" type="image/webp" onload="x()">'
        '<img src="/a.jpg" alt="a"></picture>',
        BASE_URL,
    )
    source = _soup(cleaned).source

    assert source is not None
    assert source.attrs == {
        "srcset": "https://example.com/a.webp 1x, https://example.com/a@2x.webp 2x",
        "type": "image/webp",
    }


def test_comments_are_dropped() -> None:
    cleaned = sanitize_html("<p>a<!-- <script>alert(1)</script> -->b</p>", BASE_URL)

    assert cleaned == "<p>ab</p>"


def test_nesting_and_order_survive() -> None:
    cleaned = sanitize_html(
        "<article><h2>Title</h2><blockquote><p>One <em>two</em></p></blockquote>"
        "<ul><li>first</li><li>second</li></ul></article>",
        BASE_URL,
    )

    assert cleaned == (
        "<article><h2>Title</h2><blockquote><p>One <em>two</em></p></blockquote>"
        "<ul><li>first</li><li>second</li></ul></article>"
    )


@pytest.mark.parametrize(
    "fragment",
    [
        '<div class="x"><a href="javascript:void(0)">x</a><img src="/i.png" srcset="/i.png 2x"></div>',
        "<section><nav><a href='../up'>up</a></nav><table><tr><th scope='col'>h</th></tr></table></section>",
        "<p>plain &amp; simple &lt;b&gt;</p><script>bad()</script>",
        "<unknown><p>nested <span style='x'>span</span></p></unknown>",
    ],
)
def test_sanitize_is_idempotent(fragment: str) -> None:
    once = sanitize_html(fragment, BASE_URL)

    assert sanitize_html(once, BASE_URL) == once
