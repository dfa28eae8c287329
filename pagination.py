"""
Page/limit validation and page metadata.

Pure helpers; nothing here touches the database.
"""
import math
from typing import Optional, Union

from pydantic import BaseModel

from config import settings
from errors import InvalidPagination


class PaginationParams(BaseModel):
    page: int
    limit: int


class Window(BaseModel):
    offset: int
    count: int


class PaginationMeta(BaseModel):
    page: int
    limit: int
    totalPages: int
    totalCount: int
    hasNext: bool
    hasPrev: bool


def _to_int(value: Union[str, int, None], default: int, field: str) -> int:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return default
    if isinstance(value, bool):
        raise InvalidPagination(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidPagination(f"{field} must be an integer")


def validate(
    page: Optional[Union[str, int]] = None,
    limit: Optional[Union[str, int]] = None,
) -> PaginationParams:
    """Parse and check page/limit, applying the defaults for missing values.

    Raises InvalidPagination when page is below 1 or limit falls outside
    1..MAX_PAGE_LIMIT.
    """
    parsed_page = _to_int(page, 1, "Page")
    parsed_limit = _to_int(limit, settings.DEFAULT_PAGE_LIMIT, "Limit")

    if parsed_page < 1:
        raise InvalidPagination("Page must be a positive integer")
    if parsed_limit < 1 or parsed_limit > settings.MAX_PAGE_LIMIT:
        raise InvalidPagination(f"Limit must be between 1 and {settings.MAX_PAGE_LIMIT}")

    return PaginationParams(page=parsed_page, limit=parsed_limit)


def compute_window(page: int, limit: int) -> Window:
    return Window(offset=(page - 1) * limit, count=limit)


def build_meta(page: int, limit: int, total_count: int) -> PaginationMeta:
    total_pages = math.ceil(total_count / limit)
    return PaginationMeta(
        page=page,
        limit=limit,
        totalPages=total_pages,
        totalCount=total_count,
        hasNext=page < total_pages,
        hasPrev=page > 1,
    )
