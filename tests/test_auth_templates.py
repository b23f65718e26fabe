"""Tests for the callback listener HTML pages."""

from __future__ import annotations

import pytest

from taskman.auth.templates import (
    DEFAULT_SUCCESS_MESSAGE,
    escape_html,
    render_error_page,
    render_success_page,
)


XSS = "<script>x</script>"
XSS_ESCAPED = "&lt;script&gt;x&lt;&#x2F;script&gt;"


class TestEscapeHtml:
    """Tests for escape_html()."""

    @pytest.mark.parametrize(
        ("raw", "escaped"),
        [
            ("&", "&amp;"),
            ("<", "&lt;"),
            (">", "&gt;"),
            ('"', "&quot;"),
            ("'", "&#x27;"),
            ("/", "&#x2F;"),
        ],
    )
    def test_escapes_each_character(self, raw: str, escaped: str) -> None:
        """Each special character is entity-escaped."""
        assert escape_html(raw) == escaped

    def test_script_tag(self) -> None:
        """A script tag is fully neutralized."""
        assert escape_html(XSS) == XSS_ESCAPED

    def test_plain_text_unchanged(self) -> None:
        """Ordinary text passes through."""
        assert escape_html("Access denied by user") == "Access denied by user"


class TestSuccessPage:
    """Tests for render_success_page()."""

    def test_structure(self) -> None:
        """Page is a complete document with the expected title."""
        page = render_success_page()
        assert page.startswith("<!DOCTYPE html>")
        assert "<title>Authentication Successful - TaskMan</title>" in page
        assert "Taskman AUTHENTICATED" in page

    def test_default_message(self) -> None:
        """Default message tells the user to return to the terminal."""
        assert escape_html(DEFAULT_SUCCESS_MESSAGE) in render_success_page()

    def test_auto_close_countdown(self) -> None:
        """Page closes itself after a short countdown."""
        page = render_success_page()
        assert "let timeLeft = 3" in page
        assert "window.close()" in page

    def test_message_is_escaped(self) -> None:
        """Raw markup never reaches the page."""
        page = render_success_page(XSS)
        assert XSS not in page
        assert XSS_ESCAPED in page


class TestErrorPage:
    """Tests for render_error_page()."""

    def test_structure(self) -> None:
        """Page carries the error title and message."""
        page = render_error_page("access_denied")
        assert "<title>Authentication Error - TaskMan</title>" in page
        assert "access_denied" in page

    def test_description_included(self) -> None:
        """Description gets its own section."""
        page = render_error_page("Authentication Failed", "User cancelled")
        assert '<p class="error-description">User cancelled</p>' in page

    def test_description_omitted(self) -> None:
        """No empty description section without a description."""
        assert "error-description" not in render_error_page("boom").split("<body>", 1)[1]

    def test_error_and_description_escaped(self) -> None:
        """Both interpolated strings are escaped."""
        page = render_error_page(XSS, XSS)
        assert XSS not in page
        assert page.count(XSS_ESCAPED) == 2
