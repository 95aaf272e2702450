"""
Tests for the sanitizer module.
"""

from inbox_classifier.sanitizer import (
    clean_text,
    decode_html_entities,
    html_to_markdown,
    looks_like_html,
    prepare_body_for_prompt,
    sanitize_email_body,
)


class TestDecodeHtmlEntities:
    """Tests for decode_html_entities function."""

    def test_empty_string(self):
        """Test with empty input."""
        assert decode_html_entities("") == ""

    def test_named_and_numeric_entities(self):
        """Test named, decimal and hex entities."""
        assert decode_html_entities("Tom &amp; Jerry &lt;3") == "Tom & Jerry <3"
        assert decode_html_entities("It&#39;s") == "It's"
        assert decode_html_entities("It&#x27;s") == "It's"
        assert decode_html_entities("&quot;quoted&quot;") == '"quoted"'

    def test_nbsp_becomes_space(self):
        """Test non-breaking space normalization."""
        assert decode_html_entities("a&nbsp;b") == "a b"


class TestLooksLikeHtml:
    """Tests for looks_like_html function."""

    def test_detects_markup(self):
        """Test common structural tags."""
        assert looks_like_html("<div>Hello</div>") is True
        assert looks_like_html("<HTML><BODY>x</BODY></HTML>") is True

    def test_plain_text(self):
        """Test text without tags."""
        assert looks_like_html("Price < 5 and > 2") is False
        assert looks_like_html("") is False


class TestHtmlToMarkdown:
    """Tests for html_to_markdown function."""

    def test_empty_string(self):
        """Test with empty input."""
        assert html_to_markdown("") == ""

    def test_removes_scripts_and_styles(self):
        """Test script and style removal."""
        html = "<style>p{color:red}</style><p>Content</p><script>malicious()</script>"
        result = html_to_markdown(html)
        assert "Content" in result
        assert "malicious" not in result
        assert "color" not in result

    def test_headings_use_atx_style(self):
        """Test heading conversion."""
        result = html_to_markdown("<h1>Title</h1>")
        assert "# Title" in result


class TestCleanText:
    """Tests for clean_text function."""

    def test_empty_string(self):
        """Test with empty input."""
        assert clean_text("") == ""

    def test_removes_markdown_links(self):
        """Test markdown link removal keeps the link text."""
        result = clean_text("Click [here](https://example.com) now")
        assert "here" in result
        assert "https://example.com" not in result

    def test_removes_markdown_images(self):
        """Test markdown image removal drops alt text too."""
        result = clean_text("Logo ![company logo](https://cdn.example.com/l.png) end")
        assert "company logo" not in result
        assert "Logo" in result
        assert "end" in result

    def test_removes_urls(self):
        """Test URL removal."""
        text = "Visit https://example.com for info"
        result = clean_text(text)
        assert "https://example.com" not in result
        assert "Visit" in result

    def test_removes_quoted_replies(self):
        """Test quoted reply line removal."""
        result = clean_text("Thanks!\n> On Monday you wrote:\n> old text")
        assert "old text" not in result
        assert "Thanks!" in result

    def test_normalizes_whitespace(self):
        """Test whitespace normalization."""
        text = "Hello    World\n\n\nTest"
        result = clean_text(text)
        assert "  " not in result
        assert "\n" not in result

    def test_removes_horizontal_rules(self):
        """Test horizontal rule removal."""
        text = "Before---After"
        result = clean_text(text)
        assert "---" not in result


class TestSanitizeEmailBody:
    """Tests for sanitize_email_body function."""

    def test_empty_string(self):
        """Test with empty input."""
        assert sanitize_email_body("") == ""

    def test_html_content(self):
        """Test HTML content is detected and converted."""
        html = "<html><body><p>Test email content</p></body></html>"
        result = sanitize_email_body(html)
        assert result == "Test email content"

    def test_text_content(self):
        """Test plain text sanitization."""
        text = "Plain text email   with   extra spaces"
        result = sanitize_email_body(text)
        assert result == "Plain text email with extra spaces"


class TestPrepareBodyForPrompt:
    """Tests for prepare_body_for_prompt function."""

    def test_truncates_to_budget(self):
        """Test that long content is cut to the character budget."""
        result = prepare_body_for_prompt("A" * 5000, max_length=1500)
        assert result == "A" * 1500

    def test_default_budget(self):
        """Test the default 1500 character budget."""
        assert len(prepare_body_for_prompt("B" * 2000)) == 1500

    def test_sanitizes_before_truncating(self):
        """Test markup does not consume the budget."""
        html = "<div>" + "<span></span>" * 200 + "Hello</div>"
        assert prepare_body_for_prompt(html, max_length=10) == "Hello"
