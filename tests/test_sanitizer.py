from linkparse.services.sanitizer import is_dangerous_url, sanitize, sanitize_html


def test_scripts_and_event_handlers_are_removed():
    html = (
        '<p onclick="steal()">Hello</p>'
        "<script>alert(1)</script>"
        '<img src="https://example.com/a.png" onerror="steal()">'
    )

    result = sanitize(html)

    assert "<script" not in result.html
    assert "onclick" not in result.html
    assert "onerror" not in result.html
    assert 'src="https://example.com/a.png"' in result.html
    assert result.has_unsafe_content is True
    assert result.removed_elements["scripts"] == 1
    assert result.removed_elements["eventHandlers"] == 2


def test_dangerous_urls_are_stripped():
    html = (
        '<a href="javascript:alert(1)">bad</a>'
        '<a href="JaVa\tScRiPt:alert(1)">sneaky</a>'
        '<img src="data:text/html;base64,PHNjcmlwdD4=">'
        '<img src="data:image/png;base64,iVBORw0KGgo=">'
    )

    result = sanitize(html)

    assert "javascript" not in result.html.lower()
    assert "data:text/html" not in result.html
    assert "data:image/png" in result.html
    assert result.removed_elements["dangerousUrls"] == 3


def test_iframes_outside_the_allowlist_are_dropped():
    html = (
        '<iframe src="https://www.youtube.com/embed/abc"></iframe>'
        '<iframe src="https://evil.example.net/frame"></iframe>'
    )

    result = sanitize(html)

    assert "youtube.com/embed/abc" in result.html
    assert "evil.example.net" not in result.html
    assert 'sandbox="allow-scripts allow-popups"' in result.html
    assert result.removed_elements["iframes"] == 1


def test_iframes_can_be_disabled_entirely():
    result = sanitize('<iframe src="https://www.youtube.com/embed/abc"></iframe>', allow_iframes=False)

    assert "<iframe" not in result.html


def test_forms_are_unwrapped_and_objects_removed():
    html = (
        '<form action="/collect"><p>Keep this text</p></form>'
        '<object data="movie.swf"></object><embed src="x.swf">'
    )

    result = sanitize(html)

    assert "<form" not in result.html
    assert "Keep this text" in result.html
    assert "<object" not in result.html
    assert "<embed" not in result.html
    assert result.removed_elements["forms"] == 1
    assert result.removed_elements["objects"] == 2


def test_links_get_noopener():
    result = sanitize('<a href="https://example.com" rel="nofollow">x</a>')

    assert 'rel="nofollow noopener noreferrer"' in result.html


def test_sanitizing_twice_changes_nothing_more():
    html = (
        '<div><p onmouseover="x()">Text</p><script>bad()</script>'
        '<a href="https://example.com">link</a>'
        '<iframe src="https://player.vimeo.com/video/1"></iframe></div>'
    )

    once = sanitize_html(html)

    assert sanitize_html(once) == once
    assert sanitize(once).has_unsafe_content is False


def test_empty_input():
    result = sanitize(None)

    assert result.html == ""
    assert result.has_unsafe_content is False


def test_is_dangerous_url():
    assert is_dangerous_url("javascript:void(0)")
    assert is_dangerous_url(" vbscript:msgbox")
    assert is_dangerous_url("data:application/javascript,alert(1)")
    assert not is_dangerous_url("data:image/gif;base64,R0lGOD")
    assert not is_dangerous_url("https://example.com")
    assert not is_dangerous_url(None)


def test_srcdoc_is_removed_from_allowed_iframes():
    html = (
        '<iframe src="https://www.youtube.com/embed/x" '
        'srcdoc="<script>parent.document.cookie</script>"></iframe>'
    )

    result = sanitize(html)

    assert "youtube.com/embed/x" in result.html
    assert "srcdoc" not in result.html
    assert "allow-same-origin" not in result.html
    assert result.has_unsafe_content is True


def test_svg_animation_cannot_set_a_script_href():
    html = (
        '<svg><a href="#"><animate attributeName="href" values="javascript:alert(1)"/>'
        '<set attributeName="href" to="javascript:alert(2)"/>'
        '<animate attributeName="opacity" values="0;1"/>'
        "<text>click</text></a></svg>"
    )

    result = sanitize(html)

    assert "javascript" not in result.html.lower()
    assert 'values="0;1"' in result.html
    assert result.removed_elements["dangerousUrls"] == 2
    assert result.has_unsafe_content is True
