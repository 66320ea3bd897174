from fastapi import APIRouter, Depends

from conduit.dependencies import get_article_store
from conduit.schemas import TagList
from conduit.stores import ArticleStore

router = APIRouter(prefix="/api/v1/tags", tags=["tags"])

@router.get("", response_model=TagList)
async def list_tags(articles: ArticleStore = Depends(get_article_store)):
    return TagList(tags=[tag.name for tag in await articles.get_tags()])
