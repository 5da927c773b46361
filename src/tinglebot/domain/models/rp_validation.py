"""
Roleplay post validation.

Decides whether a message posted in an RP quest thread counts toward the
participant's post requirement. Low-effort posts (reactions, emoji, links,
out-of-character chatter) are rejected with a reason that can be logged.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

MIN_CONTENT_LENGTH = 10
MIN_RP_LENGTH = 20
MIN_LETTER_RATIO = 0.3
MIN_REPEATED_WORDS = 3

_REACTION_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^lol+$", r"^haha+$", r"^yes+$", r"^no+$", r"^ok+$",
        r"^nice+$", r"^cool+$", r"^wow+$", r"^omg+$", r"^lmao+$",
        r"^rofl+$", r"^xd+$", r"^uwu+$", r"^owo+$",
    )
)

_CUSTOM_EMOJI = re.compile(r"^(<a?:\w+:\d+>\s*)+$")
_SYMBOLS_ONLY = re.compile(r"^[\d\s\W_]+$")
_REPEATED_CHARS = re.compile(r"^(.)\1{10,}$", re.DOTALL)
_URL_ONLY = re.compile(r"^https?://\S+$", re.IGNORECASE)
_MENTION_ONLY = re.compile(r"^(<@!?\d+>\s*)+$")
_CHANNEL_MENTION_ONLY = re.compile(r"^(<#\d+>\s*)+$")
_KEYBOARD_MASH = re.compile(r"^[qwertyuiopasdfghjklzxcvbnm]{10,}$", re.IGNORECASE)
_LETTER = re.compile(r"[a-zA-Z]")

# Zero-width joiner, variation selectors and skin-tone modifiers glue emoji together.
_EMOJI_JOINERS = {"‍", "︎", "️"}


@dataclass(frozen=True)
class RPPostValidation:
    valid: bool
    reason: Optional[str] = None


def _is_emoji_char(ch: str) -> bool:
    if ch in _EMOJI_JOINERS or ch.isspace():
        return True
    if 0x1F3FB <= ord(ch) <= 0x1F3FF:
        return True
    return unicodedata.category(ch) in ("So", "Sk")


def _is_punctuation_only(content: str) -> bool:
    return all(ch.isspace() or unicodedata.category(ch).startswith("P") for ch in content)


def validate_rp_post(
    content: Optional[str],
    *,
    has_attachments: bool = False,
    has_embeds: bool = False,
) -> RPPostValidation:
    """
    Validate a roleplay post.

    Args:
        content: Raw message text
        has_attachments: Whether the message carried file attachments
        has_embeds: Whether the message carried embeds, GIFs or stickers

    Returns:
        ``RPPostValidation`` with ``valid`` and, when rejected, a ``reason``.
    """
    text = (content or "").strip()

    if not text and has_embeds:
        return RPPostValidation(False, "Content is only GIFs/stickers/embeds")
    if has_attachments and len(text) < MIN_CONTENT_LENGTH:
        return RPPostValidation(False, "Content is only attachments without meaningful text")

    if len(text) < MIN_CONTENT_LENGTH:
        return RPPostValidation(
            False, f"Content too short ({len(text)} chars, minimum {MIN_CONTENT_LENGTH})"
        )
    if len(text) < MIN_RP_LENGTH:
        return RPPostValidation(
            False, f"Content too short for RP ({len(text)} chars, minimum {MIN_RP_LENGTH})"
        )
    if "))" in text:
        return RPPostValidation(False, 'Content contains "))" (likely an out-of-character post)')

    if all(_is_emoji_char(ch) for ch in text):
        return RPPostValidation(False, "Content is only emojis")

    pattern_checks = (
        (_CUSTOM_EMOJI, "Content is only custom emojis"),
        (_SYMBOLS_ONLY, "Content is only numbers/symbols"),
        (_REPEATED_CHARS, "Content is just repeated characters (spam-like)"),
        (_URL_ONLY, "Content is only a URL/link"),
        (_MENTION_ONLY, "Content is only mentions/pings"),
        (_CHANNEL_MENTION_ONLY, "Content is only channel mentions"),
        (_KEYBOARD_MASH, "Content appears to be keyboard mashing"),
    )
    for regex, reason in pattern_checks:
        if regex.match(text):
            return RPPostValidation(False, reason)

    if _is_punctuation_only(text):
        return RPPostValidation(False, "Content is only punctuation and spaces")

    if any(pattern.match(text) for pattern in _REACTION_PATTERNS):
        return RPPostValidation(False, "Content is just a reaction-style response")

    words = text.split()
    if len(words) >= MIN_REPEATED_WORDS and len({w.lower() for w in words}) == 1:
        return RPPostValidation(False, "Content is just repeated single words")

    letters = len(_LETTER.findall(text))
    non_space = len(re.sub(r"\s", "", text))
    if non_space and letters / non_space < MIN_LETTER_RATIO:
        percentage = round(letters / non_space * 100)
        return RPPostValidation(
            False,
            f"Content has too few letters ({percentage}% letters, "
            f"minimum {int(MIN_LETTER_RATIO * 100)}%)",
        )

    return RPPostValidation(True)
