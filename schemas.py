"""
Database Schemas

MongoDB collection schemas and API payloads as Pydantic models.

Collection schemas are named after their collection:
- Poem -> "poem" collection
- User -> "user" collection
"""

from pydantic import BaseModel, Field
from typing import Annotated, Optional, List, Literal
from datetime import datetime

Language = Literal["en", "hi", "ur"]
Category = Literal["poem", "ghazal", "sher", "nazm", "rubai", "marsiya", "qataa", "other"]
Status = Literal["draft", "published"]
Role = Literal["user", "poet", "admin"]


class Image(BaseModel):
    publicId: Optional[str] = Field(None, description="Image host identifier")
    url: str = Field(..., description="Public image URL")


class MultilingualText(BaseModel):
    en: str = Field(..., min_length=1, max_length=500)
    hi: str = Field(..., min_length=1, max_length=500)
    ur: str = Field(..., min_length=1, max_length=500)


class Couplet(BaseModel):
    couplet: str = Field(..., min_length=1, max_length=1000, description="Verse text")
    meaning: Optional[str] = Field(None, max_length=1000, description="Explanation of the verse")


class PoemContent(BaseModel):
    en: List[Couplet] = Field(..., min_length=1)
    hi: List[Couplet] = Field(..., min_length=1)
    ur: List[Couplet] = Field(..., min_length=1)


class Bookmark(BaseModel):
    poemId: str
    bookmarkedAt: datetime


class Poem(BaseModel):
    """
    Poems collection schema
    Collection name: "poem"
    """
    title: MultilingualText
    content: PoemContent
    slug: MultilingualText
    poet: str = Field(..., description="Reference to the poet's user id")
    topics: List[str] = Field(default_factory=list, description="Free text tags")
    category: Category = "poem"
    status: Status = "published"
    coverImage: Optional[Image] = None
    viewsCount: int = Field(0, ge=0)
    bookmarkCount: int = Field(0, ge=0)
    createdAt: Optional[datetime] = Field(default=None, description="Creation date")


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str
    slug: Optional[str] = None
    role: Role = "user"
    profilePicture: Optional[Image] = None
    bookmarks: List[Bookmark] = Field(default_factory=list)
    poemCount: int = Field(0, ge=0)


# Requests

class FeedQuery(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


class PoemCreate(BaseModel):
    title: MultilingualText
    content: PoemContent
    topics: List[Annotated[str, Field(min_length=1, max_length=50)]] = Field(default_factory=list, max_length=10)
    category: Category = "poem"
    status: Status = "published"
    poet: Optional[str] = Field(None, description="Required when an admin creates the poem")
    coverImage: Optional[Image] = None


class PoemUpdate(BaseModel):
    """Partial edit; omitted fields keep their stored value."""
    title: Optional[MultilingualText] = None
    content: Optional[PoemContent] = None
    topics: Optional[List[Annotated[str, Field(min_length=1, max_length=50)]]] = Field(None, max_length=10)
    category: Optional[Category] = None
    status: Optional[Status] = None
    coverImage: Optional[Image] = None


class BookmarkRequest(BaseModel):
    poemId: str
    action: Literal["add", "remove"]


# Responses

class PoetSummary(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    slug: Optional[str] = None
    profilePicture: Optional[Image] = None


class FeedItem(BaseModel):
    id: str
    poemId: str
    language: Language
    poet: PoetSummary
    slug: Optional[str] = None
    couplet: str
    coverImage: Optional[Image] = None
    viewsCount: int = 0
    bookmarkCount: int = 0
    topics: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    createdAt: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class FeedResponse(BaseModel):
    items: List[FeedItem]
    pagination: Pagination


class SearchResult(BaseModel):
    id: str
    type: Literal["poem"] = "poem"
    title: dict
    poet: PoetSummary
    slug: str
    category: str
    excerpt: str


class SearchResponse(BaseModel):
    results: List[SearchResult]
