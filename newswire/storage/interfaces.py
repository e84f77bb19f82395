"""Catalog store contract shared by the in-memory and SQL backends."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..ingestion.interfaces import Article, Category

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_RELATED = 3
MAX_RELATED = 10


def clamp_limit(limit: Optional[int], default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


def clamp_offset(offset: Optional[int]) -> int:
    return max(0, int(offset or 0))


def category_value(category) -> Optional[str]:
    """Normalize a category filter; None or "all" means no filter."""
    if category is None:
        return None
    if isinstance(category, Category):
        return category.value
    value = str(category).strip().lower()
    if not value or value == "all":
        return None
    return value


def matches_query(article: Article, needle: str) -> bool:
    """Case-insensitive substring match over title, excerpt, summary and tags."""
    if needle in article.title.lower():
        return True
    if needle in article.excerpt.lower() or needle in article.summary.lower():
        return True
    return any(needle in tag.lower() for tag in article.tags)


def is_related(article: Article, other: Article) -> bool:
    if other.id == article.id:
        return False
    if other.category is article.category:
        return True
    return bool(set(article.tags) & set(other.tags))


@dataclass
class Page:
    """One page of a listing or search."""
    articles: List[Article] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    @classmethod
    def slice(cls, articles: Sequence[Article], limit: int, offset: int) -> "Page":
        window = list(articles[offset:offset + limit])
        return cls(articles=window, total=len(articles), has_more=offset + limit < len(articles))

    def to_dict(self) -> dict:
        return {
            "articles": [a.to_dict() for a in self.articles],
            "total": self.total,
            "hasMore": self.has_more,
        }


class CatalogStoreInterface:
    """Interface for catalog storage."""

    def add_articles(self, articles: List[Article]) -> int:
        """Merge-insert, skipping URL duplicates. Returns number inserted."""
        raise NotImplementedError

    def replace_articles(self, articles: List[Article]) -> int:
        """Discard the catalog and substitute ``articles``."""
        raise NotImplementedError

    def list_articles(
        self,
        category=None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        featured: bool = None,
        breaking: bool = None,
        trending: bool = None,
    ) -> Page:
        raise NotImplementedError

    def get_by_id(self, article_id: str) -> Article:
        """Raises ArticleNotFound."""
        raise NotImplementedError

    def search(self, query: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> Page:
        raise NotImplementedError

    def related(self, article_id: str, limit: int = DEFAULT_RELATED) -> List[Article]:
        """Same category or shared tags, excluding the article itself. Unknown ids give []."""
        raise NotImplementedError

    def increment_view(self, article_id: str) -> int:
        """Returns the new view count. Raises ArticleNotFound."""
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def stats(self) -> dict:
        raise NotImplementedError

    def categories(self) -> List[dict]:
        raise NotImplementedError

    def sources(self) -> List[dict]:
        raise NotImplementedError
