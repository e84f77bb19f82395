"""HTTP read/mutation surface over the catalog store."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from ..classification.signals import freshness_badge
from ..config.settings import Settings, settings as default_settings
from ..config.sources import SourceRegistry
from ..ingestion.interfaces import Article, ArticleNotFound, utcnow
from ..pipeline.aggregator import NewsAggregator
from ..pipeline.bootstrap import BootstrapInitializer
from ..pipeline.scheduler import RefreshScheduler
from ..storage.factory import build_catalog_store, get_catalog_store
from ..storage.interfaces import CatalogStoreInterface, Page

logger = structlog.get_logger()


def create_app(
    store: CatalogStoreInterface = None,
    registry: SourceRegistry = None,
    config: Settings = None,
    aggregator: NewsAggregator = None,
    scheduler: RefreshScheduler = None,
    bootstrap: BootstrapInitializer = None,
    run_background: bool = True,
) -> FastAPI:
    """Wire the store, scheduler and bootstrap into a FastAPI app.

    With ``run_background`` the lifespan starts the refresh scheduler and the
    bootstrap task; tests pass False and drive both directly.
    """
    if store is None:
        # The process-wide store only belongs to the process-wide settings
        store = get_catalog_store() if config is None else build_catalog_store(config)
    config = config or default_settings
    registry = registry if registry is not None else SourceRegistry.from_config(config=config)
    aggregator = aggregator or NewsAggregator(registry, config)
    scheduler = scheduler or RefreshScheduler(aggregator, store, registry, config)
    bootstrap = bootstrap or BootstrapInitializer(store, aggregator, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if run_background:
            task = asyncio.create_task(bootstrap.initialize())
            scheduler.start()
        yield
        if run_background:
            scheduler.stop()
            if task is not None and not task.done():
                task.cancel()

    app = FastAPI(title="Newswire", lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.bootstrap = bootstrap

    def serialize(article: Article) -> dict:
        data = article.to_dict()
        badge = freshness_badge(article.published_at, utcnow(), config)
        data["badge"] = badge.value if badge else None
        return data

    def serialize_page(page: Page) -> dict:
        return {
            "articles": [serialize(a) for a in page.articles],
            "total": page.total,
            "hasMore": page.has_more,
        }

    async def ensure_ready() -> None:
        # Serve whatever the store holds once the wait runs out.
        if bootstrap.ready.is_set():
            return
        if not run_background:
            asyncio.ensure_future(bootstrap.initialize())
        if not await bootstrap.wait_ready(config.ready_wait_seconds):
            logger.warning("serving_before_ready", catalog_size=store.count())

    @app.exception_handler(ArticleNotFound)
    async def article_not_found(request: Request, exc: ArticleNotFound):
        return JSONResponse(status_code=404, content={"error": "Article not found"})

    # ===== HEALTH CHECK ENDPOINT =====
    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers."""
        try:
            return {
                "status": "healthy",
                "timestamp": utcnow().isoformat(),
                "ready": bootstrap.ready.is_set(),
                "articles": store.count(),
                "scheduler": scheduler.state.value,
            }
        except Exception as e:
            logger.exception("health_check_failed")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "error": str(e)}
            )

    # ===== ARTICLES =====
    @app.get("/articles")
    async def list_articles(
        category: Optional[str] = Query(None, description="Category filter"),
        limit: int = Query(20, description="Page size, clamped to 1..100"),
        offset: int = Query(0),
        featured: Optional[bool] = Query(None),
        breaking: Optional[bool] = Query(None),
        trending: Optional[bool] = Query(None),
    ):
        await ensure_ready()
        page = store.list_articles(
            category=category, limit=limit, offset=offset,
            featured=featured, breaking=breaking, trending=trending,
        )
        return serialize_page(page)

    @app.get("/articles/search")
    async def search_articles(
        q: str = Query("", description="Search query"),
        limit: int = Query(20),
        offset: int = Query(0),
    ):
        await ensure_ready()
        return serialize_page(store.search(q, limit=limit, offset=offset))

    @app.get("/articles/{article_id}")
    async def get_article(article_id: str):
        await ensure_ready()
        return serialize(store.get_by_id(article_id))

    @app.get("/articles/{article_id}/related")
    async def related_articles(article_id: str, limit: int = Query(3, description="Max 10")):
        await ensure_ready()
        return {"articles": [serialize(a) for a in store.related(article_id, limit=limit)]}

    @app.post("/articles/{article_id}/view")
    async def increment_view(article_id: str):
        return {"viewCount": store.increment_view(article_id)}

    # ===== CATALOG METADATA =====
    @app.get("/categories")
    async def categories():
        await ensure_ready()
        return {"categories": store.categories()}

    @app.get("/sources")
    async def sources():
        return {"sources": registry.stats(), "catalog": store.sources()}

    @app.get("/stats")
    async def stats():
        return {
            "catalog": store.stats(),
            "scheduler": scheduler.stats(),
            "bootstrap": {
                "ready": bootstrap.ready.is_set(),
                "outcome": bootstrap.outcome,
            },
        }

    # ===== ADMIN =====
    @app.post("/admin/refresh")
    async def admin_refresh():
        """Force a full refresh; an empty batch leaves the catalog as it was."""
        stored = await scheduler.force_run()
        logger.info("admin_refresh", stored=stored)
        return {"success": stored > 0, "count": stored, "total": store.count()}

    return app
