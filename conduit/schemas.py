from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# --- Profile / User ---

class UserBase(BaseModel):
    username: str = Field(max_length=100)
    email: str = Field(max_length=255)
    bio: str = ""
    image: str = Field("", max_length=500)


class UserCreate(UserBase):
    pass


class UserUpdate(BaseModel):
    username: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    bio: str | None = None
    image: str | None = Field(None, max_length=500)


class UserResponse(UserBase):
    id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ProfileResponse(BaseModel):
    username: str
    bio: str
    image: str
    following: bool = False
    model_config = ConfigDict(from_attributes=True)


class FollowRequest(BaseModel):
    follower_id: int


# --- Comment ---

class CommentCreate(BaseModel):
    body: str
    user_id: int


class CommentResponse(BaseModel):
    id: int
    body: str
    created_at: datetime
    updated_at: datetime
    author: ProfileResponse


class CommentList(BaseModel):
    comments: list[CommentResponse]


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(max_length=300)
    description: str = ""
    body: str
    tag_list: list[str] = []
    user_id: int


class ArticleUpdate(BaseModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    body: str | None = None
    tag_list: list[str] | None = None


class ArticleResponse(BaseModel):
    id: int
    title: str
    description: str
    body: str
    tag_list: list[str] = []
    created_at: datetime
    updated_at: datetime
    favorited: bool = False
    favorites_count: int
    author: ProfileResponse | None = None


class ArticleList(BaseModel):
    articles: list[ArticleResponse]
    articles_count: int


class FavoriteRequest(BaseModel):
    user_id: int


# --- Tag ---

class TagList(BaseModel):
    tags: list[str]
