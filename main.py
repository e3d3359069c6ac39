import logging
import os
import random
import re
import sys
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import ValidationError

from database import POEMS, USERS, get_store, populate_poets, serialize
from errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    PoetryError,
    ValidationFailedError,
)
from feed import assemble_feed
from schemas import (
    BookmarkRequest,
    FeedQuery,
    FeedResponse,
    MultilingualText,
    Poem as PoemSchema,
    PoemCreate,
    PoemUpdate,
    SearchResponse,
    User as UserSchema,
)
from utils import LANGUAGE_CODES, search_terms, slugify

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="Multilingual Poetry API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Auth setup (tokens are issued by the identity provider, we only verify them)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session-token")

auth_scheme = HTTPBearer(auto_error=False)

SEARCH_LIMIT = 20
SEARCH_FIELDS = [
    *(f"title.{lang}" for lang in LANGUAGE_CODES),
    *(f"slug.{lang}" for lang in LANGUAGE_CODES),
    *(f"content.{lang}.couplet" for lang in LANGUAGE_CODES),
    "topics",
    "category",
]


def get_rng() -> random.Random:
    return random.Random()


def error_response(status_code: int, message: str, error: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "error": error}, headers=headers)


@app.exception_handler(PoetryError)
async def poetry_error_handler(request: Request, exc: PoetryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(exc.status_code, "Server error", str(exc))
    return error_response(exc.status_code, exc.message, str(exc), getattr(exc, "headers", None))


# Identity

def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected token: %s", exc)
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return {"id": str(user_id), "role": payload.get("role", "user")}


async def get_optional_user(
    request: Request,
    cred: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Optional[Dict[str, Any]]:
    if cred is not None and cred.scheme.lower() == "bearer":
        token = cred.credentials
    else:
        token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    return decode_token(token)


async def get_current_user(user: Optional[Dict[str, Any]] = Depends(get_optional_user)) -> Dict[str, Any]:
    if user is None:
        raise AuthenticationError()
    return user


# Helpers

def find_poem(store, identifier: str) -> Optional[dict]:
    if store.is_id(identifier):
        return store.find_one(POEMS, {"_id": store.to_id(identifier)})
    return store.find_one(POEMS, {"$or": [{f"slug.{lang}": identifier} for lang in LANGUAGE_CODES]})


def load_user(store, user_id: str) -> dict:
    user = store.find_one(USERS, {"_id": store.to_id(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return user


@app.get("/")
def root(store=Depends(get_store)):
    return {"message": "Multilingual Poetry API running", "database": store.mode}


# Public endpoints
@app.get("/api/poems/feed", response_model=FeedResponse)
def poem_feed(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    store=Depends(get_store),
    rng: random.Random = Depends(get_rng),
):
    raw = {k: v for k, v in {"page": page, "limit": limit}.items() if v is not None}
    try:
        params = FeedQuery.model_validate(raw)
    except ValidationError as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid pagination parameters", str(exc))
    try:
        return assemble_feed(store, params.page, params.limit, user, rng)
    except Exception as exc:
        logger.exception("Feed assembly failed")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error", str(exc))


@app.get("/api/search-poems", response_model=SearchResponse)
def search_poems(q: Optional[str] = None, store=Depends(get_store)):
    if not q or len(q.strip()) < 2:
        raise ValidationFailedError("Query must be at least 2 characters")
    terms = search_terms(q)
    query = {
        "status": "published",
        "$or": [
            {field: {"$regex": re.escape(term), "$options": "i"}}
            for term in terms
            for field in SEARCH_FIELDS
        ],
    }
    poems = populate_poets(store, store.find(POEMS, query, limit=SEARCH_LIMIT))
    results: List[dict] = []
    for poem in poems:
        english = (poem.get("content") or {}).get("en") or []
        excerpt = english[0].get("couplet", "")[:100] if english else ""
        results.append({
            "id": str(poem["_id"]),
            "type": "poem",
            "title": serialize(poem.get("title") or {}),
            "poet": serialize(poem.get("poet") or {"name": "Unknown"}),
            "slug": (poem.get("slug") or {}).get("en") or str(poem["_id"]),
            "category": poem.get("category") or "Uncategorized",
            "excerpt": excerpt or "No excerpt available",
        })
    return {"results": results}


@app.post("/api/poems/bookmark")
def bookmark_poem(
    payload: BookmarkRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
):
    poem_id = store.to_id(payload.poemId)
    poem = store.find_one(POEMS, {"_id": poem_id})
    if not poem:
        raise NotFoundError("Poem not found")
    reader = load_user(store, user["id"])
    reader_id = reader["_id"]

    poem_marks = poem.get("bookmarks") or []
    on_poem = any(str(b.get("userId")) == str(reader_id) for b in poem_marks)
    on_user = any(str(b.get("poemId")) == str(poem_id) for b in reader.get("bookmarks") or [])

    if payload.action == "add":
        if on_poem or on_user:
            raise ValidationFailedError("Poem already bookmarked")
        now = datetime.now(timezone.utc)
        count = len(poem_marks) + 1
        store.update_one(POEMS, {"_id": poem_id}, {
            "$push": {"bookmarks": {"userId": reader_id, "bookmarkedAt": now}},
            "$set": {"bookmarkCount": count},
        })
        store.update_one(USERS, {"_id": reader_id}, {"$push": {"bookmarks": {"poemId": poem_id, "bookmarkedAt": now}}})
        logger.info("User %s bookmarked poem %s", reader_id, poem_id)
        return {"message": "Poem bookmarked successfully", "bookmarkCount": count}

    if not on_poem and not on_user:
        raise ValidationFailedError("Poem not bookmarked by user")
    remaining = [b for b in poem_marks if str(b.get("userId")) != str(reader_id)]
    count = max(0, len(remaining))
    store.update_one(POEMS, {"_id": poem_id}, {
        "$pull": {"bookmarks": {"userId": reader_id}},
        "$set": {"bookmarkCount": count},
    })
    store.update_one(USERS, {"_id": reader_id}, {"$pull": {"bookmarks": {"poemId": poem_id}}})
    logger.info("User %s removed bookmark on poem %s", reader_id, poem_id)
    return {"message": "Poem unbookmarked successfully", "bookmarkCount": count}


@app.get("/api/poems/{identifier}")
def get_poem(identifier: str, store=Depends(get_store)):
    poem = find_poem(store, identifier)
    if not poem:
        raise NotFoundError("Poem not found")
    store.update_one(POEMS, {"_id": poem["_id"]}, {"$inc": {"viewsCount": 1}})
    poem = store.find_one(POEMS, {"_id": poem["_id"]}) or poem
    poem.pop("bookmarks", None)
    populate_poets(store, [poem])
    return {"poem": serialize(poem)}


# Poet/admin endpoints
@app.post("/api/poems", status_code=status.HTTP_201_CREATED)
def create_poem(
    payload: PoemCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
):
    current = load_user(store, user["id"])
    role = current.get("role")
    if role not in ("poet", "admin"):
        raise PermissionDeniedError("Forbidden: Only poets or admins can create poems")

    poet_id = str(current["_id"]) if role == "poet" else payload.poet
    if not poet_id:
        raise ValidationFailedError("Poet ID is required for admins")
    poet = store.find_one(USERS, {"_id": store.to_id(poet_id)})
    if not poet or poet.get("role") != "poet":
        raise ValidationFailedError("Invalid or non-poet user selected")

    slug = {lang: slugify(payload.title.en, lang) for lang in LANGUAGE_CODES}
    taken = store.find(POEMS, {"$or": [{f"slug.{lang}": s} for lang, s in slug.items()]}, limit=1)
    if taken:
        raise ValidationFailedError("Slug already exists")

    poem = PoemSchema(
        title=payload.title,
        content=payload.content,
        slug=MultilingualText(**slug),
        poet=str(poet["_id"]),
        topics=[t.strip() for t in payload.topics if t.strip()],
        category=payload.category,
        status=payload.status,
        coverImage=payload.coverImage,
        createdAt=datetime.now(timezone.utc),
    )
    doc = poem.model_dump()
    doc["poet"] = poet["_id"]
    doc["bookmarks"] = []
    new_id = store.insert_one(POEMS, doc)
    store.update_one(USERS, {"_id": poet["_id"]}, {"$inc": {"poemCount": 1}})
    logger.info("Poem %s created for poet %s", new_id, poet["_id"])
    return {"message": "Poem created successfully", "poem": serialize({**doc, "_id": new_id})}


def check_owner(poem: dict, current: dict, action: str) -> None:
    is_admin = current.get("role") == "admin"
    owner = poem.get("poet")
    if owner is None and not is_admin:
        raise PermissionDeniedError(f"Forbidden: Only admins can {action} poems without an owner")
    if owner is not None and str(owner) != str(current["_id"]) and not is_admin:
        raise PermissionDeniedError(f"Forbidden: Only the poet or admins can {action} this poem")


@app.put("/api/poems/{identifier}")
def update_poem(
    identifier: str,
    payload: PoemUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
):
    poem = find_poem(store, identifier)
    if not poem:
        raise NotFoundError("Poem not found")
    current = load_user(store, user["id"])
    check_owner(poem, current, "update")

    update = payload.model_dump(exclude_none=True)
    if not update:
        raise ValidationFailedError("No fields to update")
    if "topics" in update:
        update["topics"] = [t.strip() for t in update["topics"] if t.strip()]
    if payload.title and payload.title.en != (poem.get("title") or {}).get("en"):
        slug = {lang: slugify(payload.title.en, lang) for lang in LANGUAGE_CODES}
        taken = store.find(POEMS, {
            "_id": {"$ne": poem["_id"]},
            "$or": [{f"slug.{lang}": s} for lang, s in slug.items()],
        }, limit=1)
        if taken:
            raise ValidationFailedError("Slug already exists")
        update["slug"] = slug
    update["updatedAt"] = datetime.now(timezone.utc)

    store.update_one(POEMS, {"_id": poem["_id"]}, {"$set": update})
    logger.info("Poem %s updated by %s", poem["_id"], current["_id"])
    updated = store.find_one(POEMS, {"_id": poem["_id"]}) or poem
    updated.pop("bookmarks", None)
    return {"message": "Poem updated successfully", "poem": serialize(updated)}


@app.delete("/api/poems/{identifier}")
def delete_poem(
    identifier: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
):
    poem = find_poem(store, identifier)
    if not poem:
        raise NotFoundError("Poem not found")
    current = load_user(store, user["id"])
    check_owner(poem, current, "delete")
    owner = poem.get("poet")

    store.delete_one(POEMS, {"_id": poem["_id"]})
    if owner is not None:
        store.update_one(USERS, {"_id": owner}, {"$inc": {"poemCount": -1}})
    logger.info("Poem %s deleted by %s", poem["_id"], current["_id"])
    return {"message": "Poem deleted successfully"}


# Utility endpoints
@app.get("/stats")
def stats(store=Depends(get_store)):
    return {
        "total": store.count(POEMS, {}),
        "published": store.count(POEMS, {"status": "published"}),
        "drafts": store.count(POEMS, {"status": "draft"}),
        "mode": store.mode,
    }


# Seed endpoint (dev)
@app.post("/seed")
def seed(store=Depends(get_store)):
    if store.count(POEMS, {}):
        return {"seeded": False, "message": "Already seeded"}

    ghalib_id = store.insert_one(USERS, UserSchema(name="Mirza Ghalib", slug="mirza-ghalib", role="poet").model_dump())
    faiz_id = store.insert_one(USERS, UserSchema(name="Faiz Ahmad Faiz", slug="faiz-ahmad-faiz", role="poet").model_dump())

    samples = [
        (ghalib_id, {
            "title": {"en": "Thousands of Desires", "hi": "हज़ारों ख़्वाहिशें", "ur": "ہزاروں خواہشیں"},
            "content": {
                "en": [{"couplet": "Hazaron khwahishen aisi ki har khwahish pe dam nikle"}],
                "hi": [{"couplet": "हज़ारों ख़्वाहिशें ऐसी कि हर ख़्वाहिश पे दम निकले"}],
                "ur": [{"couplet": "ہزاروں خواہشیں ایسی کہ ہر خواہش پہ دم نکلے"}],
            },
            "topics": ["desire", "longing"],
            "category": "ghazal",
        }),
        (faiz_id, {
            "title": {"en": "Do Not Ask", "hi": "मुझ से पहली सी मोहब्बत", "ur": "مجھ سے پہلی سی محبت"},
            "content": {
                "en": [{"couplet": "Mujh se pehli si mohabbat meri mehboob na maang"}],
                "hi": [{"couplet": "मुझ से पहली सी मोहब्बत मिरी महबूब न माँग"}],
                "ur": [{"couplet": "مجھ سے پہلی سی محبت مری محبوب نہ مانگ"}],
            },
            "topics": ["love", "loss"],
            "category": "nazm",
        }),
    ]

    for poet_id, data in samples:
        poem = PoemSchema(
            **data,
            slug={lang: slugify(data["title"]["en"], lang) for lang in LANGUAGE_CODES},
            poet=poet_id,
            createdAt=datetime.now(timezone.utc),
        )
        doc = poem.model_dump()
        doc["poet"] = store.to_id(poet_id)
        doc["bookmarks"] = []
        store.insert_one(POEMS, doc)
        store.update_one(USERS, {"_id": doc["poet"]}, {"$inc": {"poemCount": 1}})
    return {"seeded": True, "count": len(samples), "mode": store.mode}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
