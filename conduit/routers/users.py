from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError

from conduit.dependencies import get_user_store
from conduit.models import User
from conduit.schemas import FollowRequest, ProfileResponse, UserCreate, UserResponse, UserUpdate
from conduit.stores import UserStore

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def profile_response(user: User, following: bool = False) -> ProfileResponse:
    return ProfileResponse(
        username=user.username, bio=user.bio, image=user.image, following=following
    )


async def load_viewer(users: UserStore, viewer_id: int | None) -> User | None:
    """Resolve the optional ``viewer_id`` query parameter to a user."""
    if viewer_id is None:
        return None
    return await users.get_by_id(viewer_id)


@router.post("", status_code=201, response_model=UserResponse)
async def create_user(data: UserCreate, users: UserStore = Depends(get_user_store)):
    try:
        return await users.create(User(**data.model_dump()))
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )

@router.put("/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, data: UserUpdate, users: UserStore = Depends(get_user_store)):
    user = await users.get_by_id(user_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    try:
        return await users.update(user)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )

@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    viewer_id: int | None = Query(None),
    users: UserStore = Depends(get_user_store),
):
    user = await users.get_by_username(username)
    viewer = await load_viewer(users, viewer_id)
    return profile_response(user, await users.is_following(viewer, user))

@router.post("/{username}/follow", response_model=ProfileResponse)
async def follow_user(
    username: str, data: FollowRequest, users: UserStore = Depends(get_user_store)
):
    follower = await users.get_by_id(data.follower_id)
    followed = await users.get_by_username(username)
    if follower.id == followed.id:
        raise HTTPException(status_code=400, detail="Cannot follow yourself")
    try:
        await users.follow(follower, followed)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Already following this user")
    return profile_response(followed, following=True)

@router.delete("/{username}/follow", response_model=ProfileResponse)
async def unfollow_user(
    username: str,
    follower_id: int = Query(...),
    users: UserStore = Depends(get_user_store),
):
    follower = await users.get_by_id(follower_id)
    followed = await users.get_by_username(username)
    await users.unfollow(follower, followed)
    return profile_response(followed, following=False)
