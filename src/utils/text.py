import re
import hashlib
from src.utils.constants import MAX_BODY_CHARS_FOR_SUMMARY

_WHITESPACE = re.compile(r"\s+")


def content_hash(text):
    # sha256 over the exact string handed to the embedding call
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_whitespace(text):
    return _WHITESPACE.sub(" ", (text or "").strip())


def normalize_body_for_summary(body, max_chars=MAX_BODY_CHARS_FOR_SUMMARY):
    text = normalize_whitespace(body)
    if len(text) <= max_chars:
        return text

    return text[:max_chars] + "…"


def normalize_summary_for_embedding(summary):
    return normalize_whitespace(summary)


def chunked(items, size):
    items = list(items)
    for i in range(0, len(items), size):
        yield items[i:i + size]
