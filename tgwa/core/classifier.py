"""
Content classifier deciding the relay shape of an inbound post.
Pure functions only: no network calls, no state.
"""
from typing import Optional

from .models import (
    DEFAULT_CHANNEL_TITLE, EditText, IdentityRecord, InboundPost,
    RelayDecision, SendPhoto, SendText, Skip
)

MEDIA_FAILED_MARKER = "[Media failed to load]"

SKIP_FORWARDED = "forwarded"
SKIP_MEDIA_ONLY_EDIT = "media-only edit unsupported"
SKIP_EDIT_ADDED_MEDIA = "edit added media, unsupported"
SKIP_NO_CONTENT = "media-only post, no caption"


def format_header(channel_title: Optional[str], is_edit: bool = False) -> str:
    """Bold channel title, tagged when the post was edited."""
    title = channel_title or DEFAULT_CHANNEL_TITLE
    edited_tag = " (edited)" if is_edit else ""
    return f"*{title}*{edited_tag}"


def format_body(post: InboundPost, include_header: bool = True) -> str:
    """Build the outbound text for a post; the header alone when it has no text."""
    text = post.text if post.has_text else ""
    if not include_header:
        return text
    header = format_header(post.conversation_title, post.is_edit)
    return f"{header}\n\n{text}" if text else header


def media_failed_body(caption: str) -> str:
    return f"{caption}\n\n{MEDIA_FAILED_MARKER}"


def classify(post: InboundPost, record: Optional[IdentityRecord] = None,
             *, include_header: bool = True) -> RelayDecision:
    """Decide what to do with a post.

    ``record`` is the identity map entry for the post, if any; it is only
    consulted for edits, to tell whether the original message carried media.
    """
    if post.is_forwarded:
        return Skip(SKIP_FORWARDED)

    if post.is_edit:
        if not post.has_text:
            return Skip(SKIP_MEDIA_ONLY_EDIT)
        if post.media_ref is not None and record is not None and not record.had_media:
            return Skip(SKIP_EDIT_ADDED_MEDIA)
        return EditText(format_body(post, include_header))

    if post.media_ref is not None:
        caption = format_body(post, include_header)
        fallback_body = media_failed_body(caption) if post.has_text else None
        return SendPhoto(media_ref=post.media_ref, caption=caption, fallback_body=fallback_body)

    if post.has_text:
        return SendText(format_body(post, include_header))

    return Skip(SKIP_NO_CONTENT)
