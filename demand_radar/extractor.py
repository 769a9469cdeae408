from __future__ import annotations

import logging
import re
from typing import Iterable, Pattern, Sequence

from .config import CATEGORIES, DEMAND_PATTERNS, MAX_KEYWORDS, MIN_KEYWORD_LENGTH, STOP_WORDS
from .models import DemandCandidate


log = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    cleaned = _NON_WORD.sub(" ", text or "")
    return _WHITESPACE.sub(" ", cleaned).strip().lower()


def extract_keywords(
    cleaned: str,
    stop_words: Iterable[str] = STOP_WORDS,
    limit: int = MAX_KEYWORDS,
) -> list[str]:
    stop = set(stop_words)
    keywords = [word for word in cleaned.split() if len(word) >= MIN_KEYWORD_LENGTH and word not in stop]
    return keywords[:limit]


def categorize(keywords: Sequence[str], categories=CATEGORIES) -> str | None:
    for category, terms in categories:
        if any(term in keyword or keyword in term for keyword in keywords for term in terms):
            return category
    return None


class DemandExtractor:
    """Pull need-statements out of free text.

    The extractor holds only immutable configuration, so one instance can be
    shared between threads and ``extract`` never touches storage.
    """

    def __init__(
        self,
        patterns: Sequence[Pattern[str]] = DEMAND_PATTERNS,
        stop_words: Iterable[str] = STOP_WORDS,
        categories=CATEGORIES,
    ):
        self.patterns = tuple(patterns)
        self.stop_words = frozenset(stop_words)
        self.categories = tuple(categories)

    def extract(self, text: str) -> list[DemandCandidate]:
        if not text:
            return []
        candidates: list[DemandCandidate] = []
        seen: set[str] = set()
        total_matches = 0
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                total_matches += 1
                original = match.group(0).strip()
                demand_text = (match.group(1) if pattern.groups else original).strip()
                cleaned = clean_text(demand_text)
                if not cleaned or cleaned in seen:
                    continue
                seen.add(cleaned)
                keywords = extract_keywords(cleaned, self.stop_words)
                candidates.append(
                    DemandCandidate(
                        original_text=original,
                        cleaned_text=cleaned,
                        keywords=tuple(keywords),
                        category=categorize(keywords, self.categories),
                    )
                )
        if total_matches:
            log.debug(
                'Extracted %d unique demand(s) from %d match(es) over %d chars.',
                len(candidates),
                total_matches,
                len(text),
            )
        return candidates
