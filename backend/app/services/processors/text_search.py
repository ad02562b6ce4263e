"""
Text Search Service

Lexical relevance scoring for hybrid retrieval.

The vector signal catches paraphrases ("languages" ~ "TypeScript"); this
module adds the exact-word signal that embeddings are weak at (project names,
tool names, acronyms). Scores are computed in Python over the candidate set
loaded by the search engine, so the same ranking holds on PostgreSQL and on
SQLite.

Scoring:
--------
- Query phrase inside the title, or the full title inside the query: 1.0
- Otherwise the mean credit over query terms (stop words removed):
  - 1.0 if a title token starts with the term
  - 0.6 if a body/keyword token starts with the term
  - 0.0 otherwise
- No usable query terms: 0.0
"""

import logging
import re
from typing import Iterable, Optional


logger = logging.getLogger(__name__)


TITLE_MATCH_CREDIT = 1.0
BODY_MATCH_CREDIT = 0.6

# Minimum title length for "title mentioned in query" containment
MIN_TITLE_CONTAINMENT_CHARS = 3

STOP_WORDS = frozenset({
    "a", "about", "an", "and", "any", "are", "as", "at", "be", "by", "can",
    "could", "did", "do", "does", "for", "from", "has", "have", "how", "i",
    "in", "is", "it", "its", "me", "more", "my", "of", "on", "or", "please",
    "show", "so", "tell", "that", "the", "their", "there", "this", "to",
    "was", "we", "were", "what", "when", "where", "which", "who", "why",
    "will", "with", "would", "you", "your",
})

_TOKEN_PATTERN = re.compile(r"[a-z0-9][a-z0-9+#.\-]*")


class LexicalScorer:
    """
    Scores how well a text record matches a query by words.

    Usage:
    ------
    scorer = LexicalScorer()
    terms = scorer.prepare_query("Tell me about the Portfolio Website")
    score = scorer.score(
        "Tell me about the Portfolio Website",
        title="Portfolio Website",
        body="A personal site built with Next.js",
    )
    """

    def __init__(
        self,
        stop_words: Optional[Iterable[str]] = None,
        body_credit: float = BODY_MATCH_CREDIT,
    ):
        """
        Args:
            stop_words: Words ignored in queries (default: STOP_WORDS)
            body_credit: Credit for a term found only in body/keywords
        """
        self.stop_words = frozenset(stop_words) if stop_words is not None else STOP_WORDS
        self.body_credit = body_credit

    def tokenize(self, text: str) -> list[str]:
        """Lowercase word tokens of the cleaned text."""
        if not text:
            return []
        cleaned = clean_text_for_search(text).lower()
        return [token.strip(".-") for token in _TOKEN_PATTERN.findall(cleaned) if token.strip(".-")]

    def prepare_query(self, query_text: str) -> list[str]:
        """
        Query terms: tokens minus stop words, de-duplicated, order kept.

        Examples:
            "What languages are used?" → ["languages", "used"]
            "Tell me about the Portfolio Website" → ["portfolio", "website"]
        """
        seen: set[str] = set()
        terms = []
        for token in self.tokenize(query_text):
            if token in self.stop_words or token in seen:
                continue
            seen.add(token)
            terms.append(token)
        return terms

    def score(
        self,
        query_text: str,
        title: str,
        body: str = "",
        keywords: Optional[Iterable[str]] = None,
    ) -> float:
        """
        Lexical relevance of one record to the query, in [0, 1].

        Args:
            query_text: Raw user query
            title: Record title (fact title or project title)
            body: Record body text
            keywords: Extra keywords (fact keywords, project tools/tags)
        """
        terms = self.prepare_query(query_text)
        if not terms:
            return 0.0

        if self._title_contained(query_text, title):
            return TITLE_MATCH_CREDIT

        title_tokens = self.tokenize(title)
        other_tokens = self.tokenize(body)
        for keyword in keywords or ():
            other_tokens.extend(self.tokenize(keyword))

        total = 0.0
        for term in terms:
            if any(token.startswith(term) for token in title_tokens):
                total += TITLE_MATCH_CREDIT
            elif any(token.startswith(term) for token in other_tokens):
                total += self.body_credit

        return min(1.0, total / len(terms))

    def _title_contained(self, query_text: str, title: str) -> bool:
        query_phrase = " ".join(self.tokenize(query_text))
        title_phrase = " ".join(self.tokenize(title))
        if not query_phrase or not title_phrase:
            return False
        if len(title_phrase) >= MIN_TITLE_CONTAINMENT_CHARS and _contains_phrase(query_phrase, title_phrase):
            return True
        # Query without stop words is the whole phrase, e.g. "portfolio website"
        terms_phrase = " ".join(self.prepare_query(query_text))
        return bool(terms_phrase) and _contains_phrase(title_phrase, terms_phrase)

    def explain_query(self, query_text: str) -> dict:
        """
        Explain how a query will be processed.

        Returns:
            Dictionary with original query, tokens, and the terms kept
        """
        tokens = self.tokenize(query_text)
        terms = self.prepare_query(query_text)
        return {
            "original": query_text,
            "tokens": tokens,
            "terms": terms,
            "stop_words_removed": [t for t in tokens if t in self.stop_words],
        }


def _contains_phrase(haystack: str, needle: str) -> bool:
    """Whole-word phrase containment on space-joined token strings."""
    return f" {needle} " in f" {haystack} "


# ========================================
# Utility Functions
# ========================================

def clean_text_for_search(text: str) -> str:
    """
    Clean text before tokenizing.

    Removes:
    - HTML tags
    - URLs
    - Email addresses
    - Excessive whitespace

    Args:
        text: Text to clean

    Returns:
        Cleaned text
    """
    if not text:
        return ""

    # Remove HTML tags
    text = re.sub(r'<[^>]+>', ' ', text)

    # Remove URLs
    text = re.sub(r'https?://\S+', ' ', text)

    # Remove email addresses
    text = re.sub(r'\S+@\S+', ' ', text)

    # Remove excessive whitespace
    text = re.sub(r'\s+', ' ', text)

    return text.strip()
