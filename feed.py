"""
Poetry feed assembly.

A feed page is built from published poems. Readers with bookmarks get poems
sharing a poet or topic with what they bookmarked, topped up with the most
recent other poems; everyone else gets a random sample. Every poem is then
split into one item per language that has couplets, the items are shuffled
and the page is cut to `limit`.

Randomness comes from an injected source (anything with random(),
randrange(), shuffle() and sample(), e.g. random.Random) so callers can seed
it.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from database import POEMS, USERS, populate_poets, serialize
from errors import InvalidIdError

logger = logging.getLogger(__name__)

LANGUAGES = ("en", "hi", "ur")
COVER_IMAGE_PROBABILITY = 0.3
PUBLISHED = {"status": "published"}


def _unique(values) -> List[Any]:
    out: List[Any] = []
    for v in values:
        if v is not None and v not in out:
            out.append(v)
    return out


def _load_user(store, identity: Optional[Dict[str, Any]]) -> Optional[dict]:
    if not identity or not identity.get("id"):
        return None
    try:
        user_id = store.to_id(identity["id"])
    except InvalidIdError:
        logger.warning("Ignoring identity with malformed user id %r", identity["id"])
        return None
    return store.find_one(USERS, {"_id": user_id})


def personalized_poems(store, bookmarks: List[dict], skip: int, limit: int) -> List[dict]:
    bookmarked_ids = _unique(b.get("poemId") for b in bookmarks)
    seeds = store.find(
        POEMS,
        {"_id": {"$in": bookmarked_ids}},
        projection={"poet": 1, "topics": 1, "category": 1},
    )
    poet_ids = _unique(p.get("poet") for p in seeds)
    topics = _unique(t for p in seeds for t in (p.get("topics") or []))

    conditions = []
    if poet_ids:
        conditions.append({"poet": {"$in": poet_ids}})
    if topics:
        conditions.append({"topics": {"$in": topics}})

    poems: List[dict] = []
    related_total = 0
    if conditions:
        related = {**PUBLISHED, "_id": {"$nin": bookmarked_ids}, "$or": conditions}
        related_total = store.count(POEMS, related)
        poems = store.find(POEMS, related, skip=skip, limit=limit)

    if len(poems) < limit:
        # fill positions continue after the last related poem
        unrelated: Dict[str, Any] = {**PUBLISHED, "_id": {"$nin": bookmarked_ids}}
        if poet_ids:
            unrelated["poet"] = {"$nin": poet_ids}
        if topics:
            unrelated["topics"] = {"$nin": topics}
        fill = store.find(
            POEMS,
            unrelated,
            sort=[("createdAt", -1)],
            skip=max(0, skip - related_total),
            limit=limit - len(poems),
        )
        logger.debug("Personalized feed: %d matched, %d filled", len(poems), len(fill))
        poems.extend(fill)

    return populate_poets(store, poems)


def random_poems(store, skip: int, limit: int, rng) -> List[dict]:
    # sample enough to cover the offset, then drop it
    poems = store.sample(POEMS, PUBLISHED, skip + limit, rng)[skip:]
    return populate_poets(store, poems)


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def expand_poem(poem: dict, rng) -> List[Dict[str, Any]]:
    """Turn one poem into a feed item per language that has couplets."""
    poem_id = str(poem["_id"])
    content = poem.get("content") or {}
    slugs = poem.get("slug") or {}
    poet = poem.get("poet") or {"id": None, "name": "Unknown", "slug": None, "profilePicture": None}
    items = []
    for language in LANGUAGES:
        couplets = content.get(language) or []
        if not couplets:
            continue
        index = rng.randrange(len(couplets))
        entry = couplets[index]
        show_cover = rng.random() < COVER_IMAGE_PROBABILITY
        items.append({
            "id": f"{poem_id}-{language}-{index}",
            "poemId": poem_id,
            "language": language,
            "poet": serialize(poet),
            "slug": slugs.get(language),
            "couplet": entry.get("couplet", "") if isinstance(entry, dict) else str(entry),
            "coverImage": serialize(poem.get("coverImage")) if show_cover and poem.get("coverImage") else None,
            "viewsCount": poem.get("viewsCount", 0),
            "bookmarkCount": poem.get("bookmarkCount", 0),
            "topics": list(poem.get("topics") or []),
            "category": poem.get("category"),
            "createdAt": _iso(poem.get("createdAt")),
        })
    return items


def assemble_feed(store, page: int, limit: int, identity: Optional[Dict[str, Any]], rng) -> Dict[str, Any]:
    skip = (page - 1) * limit
    # poem count, not item count: each poem expands to up to three items
    total = store.count(POEMS, PUBLISHED)

    user = _load_user(store, identity)
    bookmarks = (user or {}).get("bookmarks") or []
    if bookmarks:
        logger.debug("Assembling personalized feed from %d bookmarks", len(bookmarks))
        poems = personalized_poems(store, bookmarks, skip, limit)
    else:
        logger.debug("Assembling random feed")
        poems = random_poems(store, skip, limit, rng)

    items: List[Dict[str, Any]] = []
    for poem in poems:
        items.extend(expand_poem(poem, rng))
    rng.shuffle(items)

    return {
        "items": items[:limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }
