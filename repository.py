"""
Query layer for categories and review revisions.

Several review_history rows can share a review_id; each is a revision of one
logical review. Only the current revision (newest created_at, highest id on a
tie) is visible through listings and trend aggregation. Selection of current
revisions happens in SQL with ROW_NUMBER() so only the rows of the requested
scope are ever read.
"""
import functools
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager

from config import settings
from errors import ConflictError, DependencyError, NotFoundError
from models import AccessLog, Category, ReviewHistory, utcnow
from pagination import build_meta, compute_window

logger = logging.getLogger(__name__)


def _storage_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage error in {method.__name__}: {str(e)}")
            raise DependencyError(f"Storage unavailable during {method.__name__}") from e
    return wrapper


class ReviewRepository:
    def __init__(self, db: Session):
        self.db = db

    def _ranked_revisions(self, category_id: Optional[int] = None):
        """Subquery of (id, category_id, stars, rank) where rank 1 marks the
        current revision of each review_id within the given scope."""
        rank = func.row_number().over(
            partition_by=ReviewHistory.review_id,
            order_by=(ReviewHistory.created_at.desc(), ReviewHistory.id.desc()),
        ).label('rank')
        query = self.db.query(
            ReviewHistory.id.label('id'),
            ReviewHistory.category_id.label('category_id'),
            ReviewHistory.stars.label('stars'),
            rank,
        )
        if category_id is not None:
            query = query.filter(ReviewHistory.category_id == category_id)
        return query.subquery()

    @_storage_errors
    def get_trending_categories(self, limit: Optional[int] = None) -> List[dict]:
        limit = limit or settings.TRENDING_LIMIT
        latest = self._ranked_revisions()
        average_stars = func.avg(latest.c.stars).label('average_stars')

        trends = (
            self.db.query(
                Category.id,
                Category.name,
                average_stars,
                func.count(latest.c.id).label('total_reviews'),
            )
            .join(latest, Category.id == latest.c.category_id)
            .filter(latest.c.rank == 1)
            .group_by(Category.id, Category.name)
            .order_by(desc('average_stars'), Category.id)
            .limit(limit)
            .all()
        )

        return [
            {
                "category_id": t.id,
                "category_name": t.name,
                "average_stars": float(t.average_stars),
                "total_reviews": t.total_reviews,
            }
            for t in trends
        ]

    @_storage_errors
    def get_reviews_by_category(self, category_id: int, page: int, limit: int) -> dict:
        """Current revisions of a category, newest first, one page at a time.

        The total is counted over the same latest-revision set in the same
        statement, so page rows and totalCount agree even while revisions are
        being inserted.
        """
        window = compute_window(page, limit)
        latest = self._ranked_revisions(category_id)
        total = func.count().over().label('total_count')

        rows = (
            self.db.query(ReviewHistory, total)
            .join(latest, ReviewHistory.id == latest.c.id)
            .join(ReviewHistory.category)
            .options(contains_eager(ReviewHistory.category))
            .filter(latest.c.rank == 1)
            .order_by(ReviewHistory.created_at.desc(), ReviewHistory.id.desc())
            .offset(window.offset)
            .limit(window.count)
            .all()
        )

        if rows:
            total_count = rows[0].total_count
        else:
            # Past the last page: no row carries the window count
            total_count = self.count_reviews_in_category(category_id)

        return {
            "data": [row[0] for row in rows],
            "pagination": build_meta(page, limit, total_count),
        }

    @_storage_errors
    def count_reviews_in_category(self, category_id: int) -> int:
        return (
            self.db.query(func.count(func.distinct(ReviewHistory.review_id)))
            .filter(ReviewHistory.category_id == category_id)
            .scalar()
        ) or 0

    @_storage_errors
    def get_reviews_needing_enrichment(self, category_id: Optional[int] = None) -> List[ReviewHistory]:
        query = self.db.query(ReviewHistory).filter(
            or_(ReviewHistory.tone.is_(None), ReviewHistory.sentiment.is_(None))
        )
        if category_id is not None:
            query = query.filter(ReviewHistory.category_id == category_id)
        return query.order_by(ReviewHistory.id).limit(settings.ENRICHMENT_BATCH_SIZE).all()

    @_storage_errors
    def category_exists(self, category_id: int) -> bool:
        return self.db.query(Category.id).filter(Category.id == category_id).first() is not None

    @_storage_errors
    def save_enrichment(self, record_id: int, tone: str, sentiment: str) -> bool:
        """Write labels to one exact revision.

        Blind single-row update: the stored labels are never read first, and a
        row that already holds these values is left untouched, so redelivered
        jobs change nothing. Returns True when the row changed.
        """
        result = self.db.execute(
            update(ReviewHistory)
            .where(ReviewHistory.id == record_id)
            .where(
                or_(
                    ReviewHistory.tone.is_distinct_from(tone),
                    ReviewHistory.sentiment.is_distinct_from(sentiment),
                )
            )
            .values(tone=tone, sentiment=sentiment, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            return True
        if self.db.query(ReviewHistory.id).filter(ReviewHistory.id == record_id).first() is None:
            raise NotFoundError(f"Review record {record_id} not found")
        return False

    @_storage_errors
    def add_access_log(self, text: str, created_at: Optional[datetime] = None) -> AccessLog:
        entry = AccessLog(text=text, created_at=created_at or utcnow())
        self.db.add(entry)
        self.db.commit()
        return entry

    @_storage_errors
    def list_categories(self) -> List[Category]:
        return self.db.query(Category).order_by(Category.id).all()

    @_storage_errors
    def create_category(self, name: str, description: Optional[str] = None) -> Category:
        existing = (
            self.db.query(Category)
            .filter(func.lower(Category.name) == func.lower(name))
            .first()
        )
        if existing:
            raise ConflictError("Category with this name already exists")

        category = Category(name=name, description=description)
        self.db.add(category)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Category with this name already exists")
        self.db.refresh(category)
        return category

    @_storage_errors
    def add_revision(self, review_id: str, stars: int, category_id: int,
                     text: Optional[str] = None) -> ReviewHistory:
        review = ReviewHistory(
            review_id=review_id,
            text=text,
            stars=stars,
            category_id=category_id,
            tone=None,
            sentiment=None,
        )
        self.db.add(review)
        self.db.commit()
        self.db.refresh(review)
        return review
