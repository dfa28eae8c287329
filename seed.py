"""
Populate the database with demo categories and review revisions.

    python seed.py

Existing rows are removed first. Revisions of the same review_id get
increasing created_at values so the later one is the current revision.
"""
import logging
import random
from datetime import datetime, timedelta

from config import settings
from database import SessionLocal, engine
from models import AccessLog, Base, Category, ReviewHistory

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

CATEGORIES = [
    ("Electronics", "Electronic devices and gadgets"),
    ("Books", "Books and literature"),
    ("Clothing", "Fashion and apparel"),
    ("Home & Kitchen", "Home essentials and kitchenware"),
    ("Sports", "Sports equipment and gear"),
]

# (category name, review_id, text, stars, tone, sentiment)
REVIEWS = [
    ("Electronics", "REV001", "Amazing phone! Great camera and battery life.", 9, "positive", "happy"),
    ("Electronics", "REV001", "Amazing phone! Great camera and battery life. Updated after 1 month.",
     10, "positive", "excited"),
    ("Electronics", "REV002", "Excellent laptop for productivity.", 8, None, None),
    ("Electronics", "REV003", "Good headphones but a bit pricey.", 7, None, None),
    ("Books", "REV004", "Incredible story! Could not put it down.", 10, "positive", "excited"),
    ("Books", "REV005", "Very informative and well-written.", 9, None, None),
    ("Books", "REV006", "Good book but slow pacing.", 7, None, None),
    ("Clothing", "REV007", "Nice shirt but shrunk after wash.", 6, "mixed", "disappointed"),
    ("Clothing", "REV008", "Decent quality for the price.", 7, None, None),
    ("Clothing", "REV009", "Comfortable jeans, good fit.", 8, None, None),
    ("Home & Kitchen", "REV010", "Best blender I have ever owned!", 10, "positive", "satisfied"),
    ("Home & Kitchen", "REV011", "Great knife set, very sharp.", 9, None, None),
    ("Home & Kitchen", "REV012", "Good pans but not non-stick.", 7, None, None),
    ("Sports", "REV013", "Poor quality, broke after one use.", 2, "negative", "angry"),
    ("Sports", "REV014", "Not worth the money.", 3, None, None),
    ("Sports", "REV015", "Average dumbbells, nothing special.", 5, None, None),
]


def pagination_reviews(rng: random.Random):
    """Extra unlabelled reviews so the first two categories span several pages."""
    for i in range(20):
        yield ("Electronics", f"REV_ELEC_{i + 100}",
               f"Electronics review {i + 1} - Testing pagination.", rng.randint(6, 10), None, None)
    for i in range(15):
        yield ("Books", f"REV_BOOK_{i + 100}",
               f"Book review {i + 1} - Great read!", rng.randint(8, 10), None, None)


def seed(db, rng: random.Random = None) -> dict:
    rng = rng or random.Random(42)

    db.query(ReviewHistory).delete()
    db.query(Category).delete()
    db.query(AccessLog).delete()
    db.commit()
    logger.info("Existing data cleared")

    categories = {}
    for name, description in CATEGORIES:
        category = Category(name=name, description=description)
        db.add(category)
        categories[name] = category
    db.flush()

    start = datetime.utcnow() - timedelta(days=30)
    rows = list(REVIEWS) + list(pagination_reviews(rng))
    for offset, (category_name, review_id, text, stars, tone, sentiment) in enumerate(rows):
        created_at = start + timedelta(minutes=offset)
        db.add(ReviewHistory(
            review_id=review_id,
            text=text,
            stars=stars,
            tone=tone,
            sentiment=sentiment,
            category_id=categories[category_name].id,
            created_at=created_at,
            updated_at=created_at,
        ))
    db.commit()

    logger.info(f"Created {len(categories)} categories and {len(rows)} review revisions")
    return {"categories": len(categories), "reviews": len(rows)}


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed(db)
    except Exception:
        db.rollback()
        logger.exception("Error seeding database")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
