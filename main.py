from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging

from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.orm import Session

from config import settings
from database import engine, get_db
from errors import DependencyError, NotFoundError, ReviewServiceError, ValidationError
from models import Base
from pagination import PaginationMeta, validate
import queues
from repository import ReviewRepository

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


app = FastAPI(title="Review Analytics API", lifespan=lifespan)


def get_repository(db: Session = Depends(get_db)) -> ReviewRepository:
    return ReviewRepository(db)


# Pydantic models
class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


class ReviewCreate(BaseModel):
    text: Optional[str] = None
    stars: int = Field(ge=1, le=10)
    review_id: str = Field(min_length=1, max_length=255)
    category_id: int


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: Optional[str] = None
    stars: int
    review_id: str
    tone: Optional[str] = None
    sentiment: Optional[str] = None
    category_id: int
    created_at: datetime
    updated_at: datetime
    category: Optional[CategoryResponse] = None
    needs_llm_processing: bool = False

    @classmethod
    def from_review(cls, review) -> "ReviewResponse":
        response = cls.model_validate(review)
        response.needs_llm_processing = review.needs_enrichment
        return response


class TrendItem(BaseModel):
    category_id: int
    category_name: str
    average_stars: float
    total_reviews: int


class TrendsResponse(BaseModel):
    success: bool = True
    data: List[TrendItem]
    count: int


class ReviewsResponse(BaseModel):
    success: bool = True
    data: List[ReviewResponse]
    pagination: PaginationMeta
    llm_processing_queued: int


class PendingReview(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: Optional[str] = None
    stars: int
    tone: Optional[str] = None
    sentiment: Optional[str] = None


class PendingResponse(BaseModel):
    success: bool = True
    data: List[PendingReview]
    count: int


def parse_category_id(value: Optional[str], required: bool = True) -> Optional[int]:
    if value is None or value.strip() == "":
        if required:
            raise ValidationError("Missing required parameter: category_id")
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError("category_id must be an integer")


# Error handlers
@app.exception_handler(ReviewServiceError)
async def service_error_handler(request: Request, exc: ReviewServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        body = {"success": False, "error": "Service temporarily unavailable"}
        if settings.DEBUG:
            body["message"] = exc.message
        return JSONResponse(status_code=exc.status_code, content=body)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    body = {"success": False, "error": "Internal server error"}
    if settings.DEBUG:
        body["message"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


# API Endpoints
@app.get("/health")
def health(db: Session = Depends(get_db)):
    services = {}
    try:
        db.execute(text("SELECT 1"))
        services["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        services["database"] = "unavailable"
    try:
        queues.get_failed_store().client.ping()
        services["broker"] = "connected"
    except Exception as e:
        logger.error(f"Broker health check failed: {str(e)}")
        services["broker"] = "unavailable"

    healthy = all(state == "connected" for state in services.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.utcnow().isoformat(),
            "services": services,
        },
    )


@app.post("/categories/", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(category: CategoryCreate, repo: ReviewRepository = Depends(get_repository)):
    return repo.create_category(category.name, category.description)


@app.get("/categories/", response_model=List[CategoryResponse])
def get_categories(repo: ReviewRepository = Depends(get_repository)):
    return repo.list_categories()


@app.get("/reviews/trends", response_model=TrendsResponse)
def get_reviews_trends(repo: ReviewRepository = Depends(get_repository)):
    queues.log_api_request("GET /reviews/trends")

    trends = [
        TrendItem(
            category_id=t["category_id"],
            category_name=t["category_name"],
            average_stars=round(t["average_stars"], 2),
            total_reviews=t["total_reviews"],
        )
        for t in repo.get_trending_categories()
    ]
    return TrendsResponse(data=trends, count=len(trends))


@app.get("/reviews/pending-llm", response_model=PendingResponse)
def get_pending_reviews(
    category_id: Optional[str] = Query(None),
    repo: ReviewRepository = Depends(get_repository),
):
    parsed_category_id = parse_category_id(category_id, required=False)
    reviews = repo.get_reviews_needing_enrichment(parsed_category_id)
    data = [PendingReview.model_validate(review) for review in reviews]
    return PendingResponse(data=data, count=len(data))


@app.get("/reviews", response_model=ReviewsResponse)
def get_reviews(
    category_id: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    repo: ReviewRepository = Depends(get_repository),
):
    parsed_category_id = parse_category_id(category_id)
    params = validate(page, limit)

    if not repo.category_exists(parsed_category_id):
        raise_not_found(parsed_category_id)

    queues.log_api_request(
        "GET /reviews",
        {"category_id": parsed_category_id, "page": params.page, "limit": params.limit},
    )

    result = repo.get_reviews_by_category(parsed_category_id, params.page, params.limit)

    needing_enrichment = [review for review in result["data"] if review.needs_enrichment]
    if needing_enrichment:
        queued = queues.enqueue_enrichment(needing_enrichment)
        logger.info(f"Queued {queued} reviews for LLM processing")

    return ReviewsResponse(
        data=[ReviewResponse.from_review(review) for review in result["data"]],
        pagination=result["pagination"],
        llm_processing_queued=len(needing_enrichment),
    )


@app.post("/reviews/", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(review: ReviewCreate, repo: ReviewRepository = Depends(get_repository)):
    if not repo.category_exists(review.category_id):
        raise_not_found(review.category_id)

    db_review = repo.add_revision(review.review_id, review.stars, review.category_id, review.text)
    try:
        queues.enqueue_enrichment([db_review])
    except DependencyError as e:
        # Stored already; /reviews/reprocess picks it up once the broker is back
        logger.error(f"Review {db_review.id} saved but not queued for enrichment: {e.message}")
    return ReviewResponse.from_review(db_review)


@app.post("/reviews/reprocess")
def reprocess_reviews(
    category_id: Optional[str] = Query(None),
    repo: ReviewRepository = Depends(get_repository),
):
    reviews = repo.get_reviews_needing_enrichment(parse_category_id(category_id, required=False))
    queued = queues.enqueue_enrichment(reviews)
    return {"success": True, "message": f"Queued {queued} reviews for reprocessing", "count": queued}


@app.get("/queues/stats")
def get_queue_stats():
    return {"success": True, "data": queues.get_queue_stats()}


@app.get("/queues/{queue_name}/failed")
def get_failed_jobs(queue_name: str):
    ensure_known_queue(queue_name)
    failed = queues.list_failed(queue_name)
    return {"success": True, "data": [job.model_dump() for job in failed], "count": len(failed)}


@app.post("/queues/clean")
def clean_queues(queue_name: Optional[str] = Query(None, alias="queue")):
    if queue_name is not None:
        ensure_known_queue(queue_name)
    return {"success": True, "removed": queues.clean_failed(queue_name)}


def raise_not_found(category_id: int):
    raise NotFoundError(f"Category with id {category_id} not found")


def ensure_known_queue(queue_name: str):
    if queue_name not in queues.QUEUE_POLICIES:
        raise ValidationError(f"Unknown queue: {queue_name}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
