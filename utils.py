import re
from typing import List, Optional

LANGUAGE_CODES = ("en", "hi", "ur")

# Romanized Urdu/Hindi words readers type, mapped to what poems are tagged with
SYNONYMS = {
    "ishq": ["mohabbat", "love", "pyar", "prem"],
    "sad": ["gham", "dukh", "sorrow", "udaas"],
    "shayari": ["poetry", "kavita", "ghazal", "sher"],
    "love": ["ishq", "mohabbat", "pyar", "prem"],
}


def slugify(title: str, language: Optional[str] = None) -> str:
    """Lowercase, keep [a-z0-9 -], hyphenate spaces, optional -{language} suffix."""
    base = re.sub(r"[^a-z0-9\s-]", "", title.lower()).strip()
    base = re.sub(r"\s+", "-", base)
    return f"{base}-{language}" if language else base


def search_terms(query: str) -> List[str]:
    terms: List[str] = []
    for word in re.split(r"[\s-]+", query.strip().lower()):
        if not word:
            continue
        for term in [word, *SYNONYMS.get(word, [])]:
            if term not in terms:
                terms.append(term)
    return terms
