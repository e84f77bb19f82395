"""SQLAlchemy models for the durable catalog backend."""

from sqlalchemy import create_engine, Column, Integer, String, Text, Boolean, DateTime, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class ArticleModel(Base):
    """Database model for catalog articles."""
    __tablename__ = "articles"

    id = Column(String(255), primary_key=True)

    # Source identification
    source_id = Column(String(255), nullable=False)
    source_name = Column(String(255))
    category = Column(String(50), nullable=False)

    # Content
    title = Column(Text, nullable=False)
    excerpt = Column(Text)
    summary = Column(Text)
    canonical_url = Column(String(2048), nullable=False)
    image_url = Column(String(2048))
    tags = Column(Text)  # JSON array

    # Deduplication key (normalized canonical_url)
    url_key = Column(String(2048), unique=True, nullable=False)

    # Timestamps
    published_at = Column(DateTime(timezone=True))
    imported_at = Column(DateTime(timezone=True))
    import_seq = Column(Integer, nullable=False, default=0)  # listing order tiebreak

    # Flags and counters
    status = Column(String(20), default="published")
    view_count = Column(Integer, default=0)
    featured = Column(Boolean, default=False)
    breaking = Column(Boolean, default=False)
    trending = Column(Boolean, default=False)
    read_time = Column(Integer, default=1)

    __table_args__ = (
        Index("idx_articles_category", "category"),
        Index("idx_articles_imported", "imported_at", "import_seq"),
        Index("idx_articles_source", "source_id"),
    )


def init_db(database_url: str):
    """Initialize database and create all tables."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return engine
