from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError

from conduit.dependencies import PaginationParams, get_article_store, get_user_store
from conduit.errors import RecordNotFoundError
from conduit.models import Article, Comment, Tag, User
from conduit.routers.users import load_viewer, profile_response
from conduit.schemas import (
    ArticleCreate,
    ArticleList,
    ArticleResponse,
    ArticleUpdate,
    CommentCreate,
    CommentList,
    CommentResponse,
    FavoriteRequest,
)
from conduit.stores import ArticleStore, UserStore

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])


def _article_response(
    article: Article, favorited: bool = False, following: bool = False
) -> ArticleResponse:
    author = None
    if article.author is not None:
        author = profile_response(article.author, following)
    return ArticleResponse(
        id=article.id,
        title=article.title,
        description=article.description,
        body=article.body,
        tag_list=[tag.name for tag in article.tags],
        created_at=article.created_at,
        updated_at=article.updated_at,
        favorited=favorited,
        favorites_count=article.favorites_count,
        author=author,
    )


async def _article_list(
    found: list[Article], articles: ArticleStore, users: UserStore, viewer: User | None
) -> ArticleList:
    """
    Render a page of articles for *viewer*.

    The viewer's favorites and follows are fetched once for the whole
    page, so the statement count does not grow with the page size.
    """
    favorited_ids: set[int] = set()
    following_ids: set[int] = set()
    if viewer is not None and found:
        favorited_ids = await articles.get_favorited_ids(viewer, found)
        following_ids = set(await users.get_following_user_ids(viewer))
    items = [
        _article_response(a, a.id in favorited_ids, a.user_id in following_ids)
        for a in found
    ]
    return ArticleList(articles=items, articles_count=len(items))


async def _single_article(
    article: Article, articles: ArticleStore, users: UserStore, viewer: User | None
) -> ArticleResponse:
    page = await _article_list([article], articles, users, viewer)
    return page.articles[0]


@router.get("", response_model=ArticleList)
async def list_articles(
    tag: str | None = Query(None),
    author: str | None = Query(None),
    favorited: str | None = Query(None, description="Username whose favorites are listed."),
    viewer_id: int | None = Query(None),
    pagination: PaginationParams = Depends(),
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    viewer = await load_viewer(users, viewer_id)
    favorited_by = None
    if favorited:
        try:
            favorited_by = await users.get_by_username(favorited)
        except RecordNotFoundError:
            return ArticleList(articles=[], articles_count=0)
    found = await articles.get_articles(
        tag=tag,
        username=author,
        favorited_by=favorited_by,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return await _article_list(found, articles, users, viewer)

@router.get("/feed", response_model=ArticleList)
async def feed_articles(
    user_id: int = Query(...),
    pagination: PaginationParams = Depends(),
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    viewer = await users.get_by_id(user_id)
    following_ids = await users.get_following_user_ids(viewer)
    found = await articles.get_feed_articles(following_ids, pagination.limit, pagination.offset)
    return await _article_list(found, articles, users, viewer)

@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(
    article_id: int,
    viewer_id: int | None = Query(None),
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    viewer = await load_viewer(users, viewer_id)
    article = await articles.get_by_id(article_id)
    return await _single_article(article, articles, users, viewer)

@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: ArticleCreate,
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    author = await users.get_by_id(data.user_id)
    article = Article(
        title=data.title,
        description=data.description,
        body=data.body,
        user_id=author.id,
        tags=[Tag(name=name) for name in data.tag_list],
    )
    try:
        await articles.create(article)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Conflicting article or tag data")
    article.author = author
    return await _single_article(article, articles, users, None)

@router.put("/{article_id}", response_model=ArticleResponse)
async def update_article(
    article_id: int,
    data: ArticleUpdate,
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    article = await articles.get_by_id(article_id)
    article.overwrite(data.title or "", data.description or "", data.body or "")
    if data.tag_list is not None:
        article.tags = [Tag(name=name) for name in data.tag_list]
    try:
        await articles.update(article)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Conflicting article or tag data")
    return await _single_article(article, articles, users, None)

@router.delete("/{article_id}", status_code=204)
async def delete_article(article_id: int, articles: ArticleStore = Depends(get_article_store)):
    await articles.delete(await articles.get_by_id(article_id))

# --- Favorites ---

@router.post("/{article_id}/favorite", response_model=ArticleResponse)
async def favorite_article(
    article_id: int,
    data: FavoriteRequest,
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    user = await users.get_by_id(data.user_id)
    article = await articles.get_by_id(article_id)
    try:
        await articles.add_favorite(article, user)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Article already favorited")
    return await _single_article(article, articles, users, user)

@router.delete("/{article_id}/favorite", response_model=ArticleResponse)
async def unfavorite_article(
    article_id: int,
    user_id: int = Query(...),
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    user = await users.get_by_id(user_id)
    article = await articles.get_by_id(article_id)
    await articles.delete_favorite(article, user)
    return await _single_article(article, articles, users, user)

# --- Comments ---

def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        body=comment.body,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        author=profile_response(comment.author),
    )

@router.get("/{article_id}/comments", response_model=CommentList)
async def list_comments(article_id: int, articles: ArticleStore = Depends(get_article_store)):
    article = await articles.get_by_id(article_id)
    comments = await articles.get_comments(article)
    return CommentList(comments=[_comment_response(c) for c in comments])

@router.post("/{article_id}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    article_id: int,
    data: CommentCreate,
    articles: ArticleStore = Depends(get_article_store),
    users: UserStore = Depends(get_user_store),
):
    article = await articles.get_by_id(article_id)
    author = await users.get_by_id(data.user_id)
    comment = await articles.create_comment(
        Comment(body=data.body, article_id=article.id, user_id=author.id)
    )
    comment.author = author
    return _comment_response(comment)

@router.delete("/{article_id}/comments/{comment_id}", status_code=204)
async def delete_comment(
    article_id: int, comment_id: int, articles: ArticleStore = Depends(get_article_store)
):
    comment = await articles.get_comment_by_id(comment_id)
    if comment.article_id != article_id:
        raise HTTPException(status_code=404, detail="Comment not found")
    await articles.delete_comment(comment)
