"""
Query Intent Analysis

Decides whether a chat prompt asks about a specific project or about the
portfolio owner in general, and extracts the project name when it can.

Detection order (first hit wins):
---------------------------------
0. General-information phrasing (skills, background, experience...)
   → not a project query, confidence 0.9
1. A known project title appears verbatim           → 1.0
2. A known alias appears                            → 0.9
3. Project phrasing + fuzzy title match > 0.6       → similarity
4. Project phrasing without a matching title        → 0.5
5. Generic project vocabulary ("project", "built")  → 0.3
6. Otherwise                                        → not a project query

Chat uses the result to tune retrieval (project queries search the project
name with a lower threshold) and to decide whether to attach a project.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional


# ================================
# Result Type
# ================================

@dataclass(frozen=True)
class QueryIntent:
    is_project_query: bool
    project_name: Optional[str] = None
    confidence: float = 0.0
    pattern: Optional[str] = None


NOT_A_PROJECT_QUERY = QueryIntent(is_project_query=False)

FUZZY_MATCH_THRESHOLD = 0.6

PROJECT_TERMS = (
    "project", "work", "case study", "designed", "developed", "created", "built",
)

# Extracted "names" that actually refer to the owner or their profile
FALSE_POSITIVE_NAMES = frozenset({
    "you", "your", "yourself", "skills", "experience", "background", "education",
})


# ================================
# Patterns
# ================================

def _owner_alternatives(owner_name: Optional[str]) -> str:
    """Regex alternative for "your" / "<owner>'s"."""
    alternatives = ["your"]
    if owner_name:
        first_name = owner_name.split()[0].lower()
        alternatives.append(rf"{re.escape(first_name)}'?s?")
    return "|".join(alternatives)


def general_patterns(owner_name: Optional[str] = None) -> list[re.Pattern]:
    owner = _owner_alternatives(owner_name)
    patterns = [
        rf"what (tech(nical)?|programming|coding|development) (skills|technologies|tools|stack|languages)",
        rf"what (is|are) ({owner}) (tech(nical)?|programming|coding|development) (skills|technologies|tools|stack|languages)",
        rf"tell me about ({owner}) (skills|background|experience|education|design approach|approach)",
        rf"what (is|are) ({owner}) (background|experience|education|design approach|approach)",
        r"\b(resume|cv|qualifications|expertise|proficiency)\b",
    ]
    if owner_name:
        first_name = re.escape(owner_name.split()[0].lower())
        patterns.append(rf"(who is|about) {first_name}\b")
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


def project_patterns(owner_name: Optional[str] = None) -> list[re.Pattern]:
    """Phrasings that ask about a named thing; group 'name' captures it."""
    owner = _owner_alternatives(owner_name)
    subject = "you"
    if owner_name:
        subject = f"{re.escape(owner_name.split()[0].lower())}|you"
    patterns = [
        r"(tell me about|what (is|was)|explain|describe|information (about|on)) (the )?(?P<name>[a-z0-9\s\-]+?) project",
        rf"(tell|what|know|hear)\s+(me|you|us)?\s*about\s+({owner})?\s*(work|project|experience)\s+(on|with|at)\s+(?P<name>.*?)(\?|$|\.)",
        r"(can|could)\s+you\s+(tell|explain|describe|share)\s+(me|us)?\s*about\s+(?P<name>.*?)(\?|$|\.)",
        rf"({subject})\s+(worked|work|created|designed|developed|built)\s+(on|for|with)\s+(?P<name>.*?)(\?|$|\.)",
        r"tell me about (the )?(?P<name>[a-z0-9\s\-]+)",
        r"(what|how)\s+(is|was|about)\s+(?P<name>.*?)(\?|$|\.)",
    ]
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


# ================================
# String Similarity
# ================================

def calculate_similarity(first: str, second: str) -> float:
    """
    Fuzzy similarity of two lowercase strings in [0, 1].

    - identical: 1.0
    - one contains the other: 0.7 + 0.3 * shorter/longer
    - otherwise: 0.6 * shared-word ratio + 0.4 * same-position-char ratio
    """
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0

    if first in second or second in first:
        shorter, longer = sorted((len(first), len(second)))
        return 0.7 + 0.3 * shorter / longer

    words_first = first.split()
    words_second = second.split()
    common = [word for word in words_first if word in words_second]
    word_ratio = len(common) / max(len(words_first), len(words_second))

    matches = sum(1 for a, b in zip(first, second) if a == b)
    char_ratio = matches / max(len(first), len(second))

    return 0.6 * word_ratio + 0.4 * char_ratio


def find_best_matching_project(
    candidate: str,
    project_titles: Iterable[str],
) -> Optional[tuple[str, float]]:
    """Best fuzzy title match for an extracted name, as (title, similarity)."""
    candidate_lower = candidate.lower().strip()
    if not candidate_lower:
        return None

    best: Optional[tuple[str, float]] = None
    for title in project_titles:
        title_lower = title.lower()
        longest = max(len(title_lower), len(candidate_lower))
        # Skip titles of very different length
        if abs(len(title_lower) - len(candidate_lower)) / longest > 0.5:
            continue

        similarity = calculate_similarity(candidate_lower, title_lower)
        if best is None or similarity > best[1]:
            best = (title, similarity)

    return best


# ================================
# Intent Analysis
# ================================

def analyze_query_intent(
    query: str,
    project_titles: Iterable[str] = (),
    aliases: Optional[Mapping[str, Iterable[str]]] = None,
    owner_name: Optional[str] = None,
) -> QueryIntent:
    """
    Classify a chat prompt.

    Args:
        query: The user's prompt
        project_titles: Titles of existing projects
        aliases: {project title: [alias, ...]}
        owner_name: Portfolio owner's name, used in general-info phrasing

    Returns:
        QueryIntent
    """
    clean_query = " ".join(query.lower().split())
    if not clean_query:
        return NOT_A_PROJECT_QUERY

    titles = [title for title in project_titles if title and title.strip()]

    for pattern in general_patterns(owner_name):
        if pattern.search(clean_query):
            return QueryIntent(False, None, 0.9, "general_info")

    # 1. Verbatim title, longest first so "Portfolio Website v2" beats "Portfolio Website"
    for title in sorted(titles, key=len, reverse=True):
        if _contains_words(clean_query, title.lower()):
            return QueryIntent(True, title, 1.0, "direct_match")

    # 2. Alias
    for title, names in (aliases or {}).items():
        for alias in names:
            if alias and _contains_words(clean_query, alias.lower()):
                return QueryIntent(True, title, 0.9, "alias_match")

    # 3./4. Project phrasing
    for pattern in project_patterns(owner_name):
        match = pattern.search(clean_query)
        if not match:
            continue
        name = (match.group("name") or "").strip(" ?.!")
        if not name:
            continue
        if name in FALSE_POSITIVE_NAMES or _is_owner(name, owner_name):
            return QueryIntent(False, None, 0.0, "false_positive")

        best = find_best_matching_project(name, titles)
        if best and best[1] > FUZZY_MATCH_THRESHOLD:
            return QueryIntent(True, best[0], best[1], "intent_pattern_match")
        return QueryIntent(True, None, 0.5, "intent_without_match")

    # 5. Generic project vocabulary
    if any(_contains_words(clean_query, term) for term in PROJECT_TERMS):
        return QueryIntent(True, None, 0.3, "general_project_intent")

    return NOT_A_PROJECT_QUERY


def _contains_words(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])", text) is not None


def _is_owner(name: str, owner_name: Optional[str]) -> bool:
    if not owner_name:
        return False
    return name in {part.lower() for part in owner_name.split()} or name == owner_name.lower()
