"""
Unit tests for roleplay post validation.
"""

import pytest

from tinglebot.domain.models.rp_validation import validate_rp_post


@pytest.mark.domain
class TestValidateRPPost:
    """Test which posts count toward an RP quest."""

    def test_real_post_is_valid(self):
        result = validate_rp_post("Link draws his sword and steps toward the Bokoblin camp.")

        assert result.valid is True
        assert result.reason is None

    def test_embed_only_post(self):
        result = validate_rp_post("", has_embeds=True)

        assert result.valid is False
        assert "GIFs" in result.reason

    def test_attachment_with_short_caption(self):
        result = validate_rp_post("look", has_attachments=True)

        assert result.valid is False
        assert "attachments" in result.reason

    @pytest.mark.parametrize(
        "content, fragment",
        [
            ("Hi there", "too short (8 chars"),
            ("Hello there, friend", "too short for RP"),
            ("I walk into the tavern quietly )) brb", "))"),
            ("😀" * 20, "only emojis"),
            ("1234567890 !!!! 12345678", "numbers/symbols"),
            ("https://example.com/some/long/path", "URL"),
            ("asdfghjklasdfghjklasdf", "keyboard mashing"),
            ("hello hello hello hello", "repeated single words"),
            ("a1234567890123456789 b", "too few letters"),
        ],
    )
    def test_low_effort_posts_rejected(self, content, fragment):
        result = validate_rp_post(content)

        assert result.valid is False
        assert fragment in result.reason

    def test_none_content(self):
        assert validate_rp_post(None).valid is False
