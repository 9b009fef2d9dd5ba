"""
Spam heuristics for product comments.

A suspicious comment is still published; it is only marked `flagged` for
admin review.
"""
import re

SPAM_KEYWORDS = [
    "viagra", "cialis", "casino", "poker", "lottery", "winner", "prize",
    "click here", "buy now", "limited time", "act now", "urgent",
    "make money", "work from home", "get rich", "free money",
    "weight loss", "diet pills", "miracle", "guaranteed",
    "http://", "https://", "www.", ".com", ".net", ".org",
]

MIN_CAPS_LENGTH = 10
MAX_CAPS_RATIO = 0.5
MAX_LINKS = 3

URL_RE = re.compile(r"(https?://\S+|www\.\S+|[a-zA-Z0-9-]+\.[a-zA-Z]{2,}\S*)", re.IGNORECASE)


def contains_spam_keywords(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in SPAM_KEYWORDS)


def has_excessive_caps(text: str) -> bool:
    if len(text) < MIN_CAPS_LENGTH:
        return False
    letters = [c for c in text if c.isalpha()]
    if not letters:
        return False
    caps = sum(1 for c in letters if c.isupper())
    return caps / len(letters) > MAX_CAPS_RATIO


def count_links(text: str) -> int:
    return len(URL_RE.findall(text))


def is_suspicious(text: str) -> bool:
    return (
        contains_spam_keywords(text)
        or has_excessive_caps(text)
        or count_links(text) > MAX_LINKS
    )
