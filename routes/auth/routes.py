from fastapi import APIRouter, Depends, HTTPException, status, Form, Request
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError, jwt
from pydantic import BaseModel, EmailStr
from tortoise.expressions import Q

from app.config import settings
from app.exceptions import Conflict, ValidationError
from app.token import ALGORITHM, get_current_user, create_access_token, create_refresh_token
from applications.user.models import User, UserRole

router = APIRouter(tags=["Auth"])


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str


def issue_tokens(user: User) -> dict:
    return {
        "access_token": create_access_token(user.id),
        "refresh_token": create_refresh_token(user.id),
        "token_type": "bearer",
    }


async def authenticate(email: str, password: str) -> User:
    user = await User.get_or_none(email=email.lower())
    if not user or not user.verify_password(password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


@router.post("/register/", status_code=status.HTTP_201_CREATED)
async def register_user(
    username: str = Form(..., min_length=3, max_length=20),
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=6),
    full_name: str = Form(..., min_length=1, max_length=100),
    role: UserRole = Form(UserRole.CLIENT),
):
    if not username.replace("_", "").isalnum():
        raise ValidationError(
            "Invalid username",
            errors=[{"field": "username", "message": "letters, digits and underscores only"}],
        )
    if await User.filter(Q(email=email.lower()) | Q(username=username)).exists():
        raise Conflict("User with this email or username already exists")

    user = await User.create(
        username=username,
        email=email.lower(),
        password=password,  # hashed in model.save()
        full_name=full_name,
        role=role,
    )
    return {
        "message": "Registration successful",
        "user": user.to_dict(),
        **issue_tokens(user),
    }


@router.post("/login/")
async def login(email: str = Form(...), password: str = Form(...)):
    user = await authenticate(email, password)
    return {"user": user.to_dict(), **issue_tokens(user)}


@router.post("/login_auth2/", response_model=TokenResponse)
async def login_auth2(form_data: OAuth2PasswordRequestForm = Depends()):
    # swagger "Authorize" sends the email in the username field
    user = await authenticate(form_data.username, form_data.password)
    return issue_tokens(user)


@router.post("/refresh/", response_model=TokenResponse)
async def refresh(refresh_token: str = Form(...)):
    try:
        payload = jwt.decode(refresh_token, settings.REFRESH_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await User.get_or_none(id=payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return issue_tokens(user)


@router.get("/me/")
async def me(request: Request, user: User = Depends(get_current_user)):
    response_data = {"user": user.to_dict()}
    if hasattr(request.state, "new_tokens"):
        response_data["new_tokens"] = request.state.new_tokens
    return response_data
