"""SQLAlchemy-backed catalog store."""

import json
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Callable, List

from sqlalchemy import func, or_
from sqlalchemy.orm import sessionmaker
import structlog

from .interfaces import (
    CatalogStoreInterface, Page, DEFAULT_PAGE_SIZE, DEFAULT_RELATED, MAX_RELATED,
    category_value, clamp_limit, clamp_offset, is_related, matches_query,
)
from .models import ArticleModel, init_db
from ..config.settings import settings
from ..ingestion.interfaces import (
    Article, ArticleNotFound, ArticleStatus, Category, SYNTHETIC_ID_PREFIX, utcnow,
)
from ..ingestion.normalize import normalize_url

logger = structlog.get_logger()


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLCatalogStore(CatalogStoreInterface):
    """Durable catalog on SQLAlchemy (SQLite by default).

    Each operation uses its own session; every write commits or rolls back
    as one transaction, so readers never see a partial batch.
    """

    def __init__(self, database_url: str = None, clock: Callable[[], datetime] = utcnow):
        if database_url is None:
            database_url = settings.database_url

        # Ensure data directory exists
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            db_path = database_url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = init_db(database_url)
        self.Session = sessionmaker(bind=self.engine)
        self._lock = Lock()
        self._clock = clock

    # Writes

    def add_articles(self, articles: List[Article]) -> int:
        with self._lock:
            session = self.Session()
            try:
                known_urls = {row[0] for row in session.query(ArticleModel.url_key)}
                known_ids = {row[0] for row in session.query(ArticleModel.id)}
                models = self._to_models(session, articles, known_urls, known_ids)
                session.add_all(models)
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        logger.info("catalog_merged", inserted=len(models), offered=len(articles))
        return len(models)

    def replace_articles(self, articles: List[Article]) -> int:
        with self._lock:
            session = self.Session()
            try:
                session.query(ArticleModel).delete()
                models = self._to_models(session, articles, set(), set())
                session.add_all(models)
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        logger.info("catalog_replaced", total=len(models))
        return len(models)

    def increment_view(self, article_id: str) -> int:
        with self._lock:
            session = self.Session()
            try:
                model = session.get(ArticleModel, article_id)
                if model is None:
                    raise ArticleNotFound(article_id)
                model.view_count = (model.view_count or 0) + 1
                session.commit()
                return model.view_count
            finally:
                session.close()

    def _to_models(self, session, articles, known_urls: set, known_ids: set) -> List[ArticleModel]:
        fresh = []
        for article in articles:
            key = normalize_url(article.canonical_url)
            if not key or key in known_urls or article.id in known_ids:
                continue
            known_urls.add(key)
            known_ids.add(article.id)
            fresh.append((article, key))
        if not fresh:
            return []

        now = self._clock()
        last_import = _aware(session.query(func.max(ArticleModel.imported_at)).scalar())
        if last_import is not None and now < last_import:
            now = last_import

        # Higher import_seq lists first; the incoming order is kept within a batch.
        top = session.query(func.max(ArticleModel.import_seq)).scalar() or 0
        base = top + len(fresh)
        return [
            self._article_to_model(article, key, now, base - i)
            for i, (article, key) in enumerate(fresh)
        ]

    # Reads

    def list_articles(
        self,
        category=None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        featured: bool = None,
        breaking: bool = None,
        trending: bool = None,
    ) -> Page:
        limit, offset = clamp_limit(limit), clamp_offset(offset)
        session = self.Session()
        try:
            query = session.query(ArticleModel)
            wanted = category_value(category)
            if wanted is not None:
                query = query.filter(ArticleModel.category == wanted)
            if featured is not None:
                query = query.filter(ArticleModel.featured == featured)
            if breaking is not None:
                query = query.filter(ArticleModel.breaking == breaking)
            if trending is not None:
                query = query.filter(ArticleModel.trending == trending)

            total = query.count()
            models = self._ordered(query).offset(offset).limit(limit).all()
            return Page(
                articles=[self._model_to_article(m) for m in models],
                total=total,
                has_more=offset + limit < total,
            )
        finally:
            session.close()

    def get_by_id(self, article_id: str) -> Article:
        session = self.Session()
        try:
            model = session.get(ArticleModel, article_id)
            if model is None:
                raise ArticleNotFound(article_id)
            return self._model_to_article(model)
        finally:
            session.close()

    def search(self, query: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> Page:
        needle = (query or "").strip().lower()
        if not needle:
            return Page()
        session = self.Session()
        try:
            pattern = f"%{needle}%"
            candidates = self._ordered(
                session.query(ArticleModel).filter(or_(
                    ArticleModel.title.ilike(pattern),
                    ArticleModel.excerpt.ilike(pattern),
                    ArticleModel.summary.ilike(pattern),
                    ArticleModel.tags.ilike(pattern),
                ))
            ).all()
            # The tags column is JSON text; re-check against the decoded list.
            matches = [a for a in map(self._model_to_article, candidates) if matches_query(a, needle)]
            return Page.slice(matches, clamp_limit(limit), clamp_offset(offset))
        finally:
            session.close()

    def related(self, article_id: str, limit: int = DEFAULT_RELATED) -> List[Article]:
        limit = clamp_limit(limit, DEFAULT_RELATED, MAX_RELATED)
        session = self.Session()
        try:
            model = session.get(ArticleModel, article_id)
            if model is None:
                return []
            article = self._model_to_article(model)
            result = []
            for model in self._ordered(session.query(ArticleModel)).yield_per(200):
                other = self._model_to_article(model)
                if is_related(article, other):
                    result.append(other)
                    if len(result) >= limit:
                        break
            return result
        finally:
            session.close()

    def count(self) -> int:
        session = self.Session()
        try:
            return session.query(ArticleModel).count()
        finally:
            session.close()

    def stats(self) -> dict:
        session = self.Session()
        try:
            total = session.query(ArticleModel).count()
            by_category = dict(
                session.query(ArticleModel.category, func.count(ArticleModel.id))
                .group_by(ArticleModel.category)
                .all()
            )
            synthetic = session.query(ArticleModel)\
                .filter(ArticleModel.id.startswith(SYNTHETIC_ID_PREFIX)).count()
            newest, oldest, last_import = session.query(
                func.max(ArticleModel.published_at),
                func.min(ArticleModel.published_at),
                func.max(ArticleModel.imported_at),
            ).one()
            return {
                "total": total,
                "by_category": by_category,
                "synthetic": synthetic,
                "newest": _aware(newest).isoformat() if newest else None,
                "oldest": _aware(oldest).isoformat() if oldest else None,
                "last_import": _aware(last_import).isoformat() if last_import else None,
            }
        finally:
            session.close()

    def categories(self) -> List[dict]:
        session = self.Session()
        try:
            rows = session.query(ArticleModel.category, func.count(ArticleModel.id))\
                .group_by(ArticleModel.category)\
                .order_by(func.count(ArticleModel.id).desc())\
                .all()
            return [{"category": name, "count": n} for name, n in rows]
        finally:
            session.close()

    def sources(self) -> List[dict]:
        session = self.Session()
        try:
            rows = session.query(
                ArticleModel.source_id, ArticleModel.source_name, func.count(ArticleModel.id),
            ).group_by(ArticleModel.source_id, ArticleModel.source_name)\
                .order_by(func.count(ArticleModel.id).desc())\
                .all()
            return [
                {"sourceId": source_id, "sourceName": name, "count": n}
                for source_id, name, n in rows
            ]
        finally:
            session.close()

    @staticmethod
    def _ordered(query):
        return query.order_by(ArticleModel.imported_at.desc(), ArticleModel.import_seq.desc())

    @staticmethod
    def _article_to_model(article: Article, url_key: str, imported_at: datetime, seq: int) -> ArticleModel:
        return ArticleModel(
            id=article.id,
            source_id=article.source_id,
            source_name=article.source_name,
            category=article.category.value,
            title=article.title,
            excerpt=article.excerpt,
            summary=article.summary,
            canonical_url=article.canonical_url,
            image_url=article.image_url,
            tags=json.dumps(list(article.tags)),
            url_key=url_key,
            published_at=article.published_at,
            imported_at=imported_at,
            import_seq=seq,
            status=article.status.value,
            view_count=article.view_count,
            featured=article.featured,
            breaking=article.breaking,
            trending=article.trending,
            read_time=article.read_time,
        )

    @staticmethod
    def _model_to_article(model: ArticleModel) -> Article:
        """Convert database model to Article."""
        return Article(
            id=model.id,
            source_id=model.source_id,
            source_name=model.source_name or model.source_id,
            title=model.title,
            canonical_url=model.canonical_url,
            category=Category.coerce(model.category),
            excerpt=model.excerpt or "",
            summary=model.summary or "",
            image_url=model.image_url or "",
            published_at=_aware(model.published_at),
            imported_at=_aware(model.imported_at),
            status=ArticleStatus(model.status or "published"),
            view_count=model.view_count or 0,
            featured=bool(model.featured),
            breaking=bool(model.breaking),
            trending=bool(model.trending),
            tags=json.loads(model.tags) if model.tags else [],
            read_time=model.read_time or 1,
        )
