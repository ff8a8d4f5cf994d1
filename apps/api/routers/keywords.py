"""
Router for the monitored keyword registry.
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.rate_limit import rate_limit
from services.keywords import (
    create_keyword_service,
    delete_keyword_service,
    get_keyword_service,
    list_keywords_service,
    update_keyword_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# ==================== Pydantic Models ====================

class CreateKeywordRequest(BaseModel):
    keyword: str = Field(min_length=1, max_length=100)
    platform: Literal["wechat", "xiaohongshu"]
    enabled: bool = True


class UpdateKeywordRequest(BaseModel):
    keyword: Optional[str] = Field(default=None, min_length=1, max_length=100)
    platform: Optional[Literal["wechat", "xiaohongshu"]] = None
    enabled: Optional[bool] = None


class KeywordResponse(BaseModel):
    id: int
    keyword: str
    platform: str
    enabled: bool
    last_run_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ListKeywordsResponse(BaseModel):
    count: int
    keywords: List[KeywordResponse]


class DeleteKeywordResponse(BaseModel):
    deleted: bool
    keyword_id: int


# ==================== Endpoints ====================

@router.get("", response_model=ListKeywordsResponse)
async def list_keywords(
    platform: Optional[Literal["wechat", "xiaohongshu"]] = Query(default=None),
    enabled: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await list_keywords_service(platform=platform, enabled=enabled, db=db)


@router.post("", response_model=KeywordResponse, status_code=201)
async def create_keyword(
    request: CreateKeywordRequest,
    _rate_limit: None = Depends(rate_limit("keyword_create", limit=120, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    return await create_keyword_service(payload=request.model_dump(), db=db)


@router.get("/{keyword_id}", response_model=KeywordResponse)
async def get_keyword(keyword_id: int, db: AsyncSession = Depends(get_db)):
    return await get_keyword_service(keyword_id=keyword_id, db=db)


@router.patch("/{keyword_id}", response_model=KeywordResponse)
async def update_keyword(
    keyword_id: int,
    request: UpdateKeywordRequest,
    _rate_limit: None = Depends(rate_limit("keyword_update", limit=240, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    return await update_keyword_service(
        keyword_id=keyword_id,
        payload=request.model_dump(exclude_none=True),
        db=db,
    )


@router.delete("/{keyword_id}", response_model=DeleteKeywordResponse)
async def delete_keyword(
    keyword_id: int,
    _rate_limit: None = Depends(rate_limit("keyword_delete", limit=120, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    return await delete_keyword_service(keyword_id=keyword_id, db=db)
