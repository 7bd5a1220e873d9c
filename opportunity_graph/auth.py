"""
Simple authentication module - no database required.
Users come from the AUTH_USERS environment variable, JWT tokens carry a role claim.

    AUTH_USERS="alice:s3cret:admin,bob:pa55:viewer"
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel

# Roles allowed to propose and execute graph changes
EDITOR_ROLES = {"admin", "editor"}


def load_users(raw: Optional[str] = None) -> dict:
    """Parse ``user:password:role`` entries (role defaults to viewer)."""
    raw = os.getenv("AUTH_USERS", "") if raw is None else raw
    users = {}
    for entry in raw.split(","):
        parts = entry.strip().split(":")
        if len(parts) < 2 or not parts[0]:
            continue
        role = parts[2] if len(parts) > 2 and parts[2] else "viewer"
        users[parts[0]] = {"password": parts[1], "role": role}
    return users


USERS = load_users()

# JWT Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "opportunity-graph-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

security = HTTPBearer(auto_error=False)

# Set AUTH_DISABLED=true in env to skip auth for local dev
AUTH_DISABLED = os.getenv("AUTH_DISABLED", "false").lower() in ("true", "1", "yes")


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    role: str = "viewer"


def create_access_token(username: str, role: str = "viewer", expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token with role claim."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode = {
        "sub": username,
        "role": role,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify a JWT token and return {username, role} if valid."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            return None
        return {"username": username, "role": payload.get("role", "viewer")}
    except JWTError:
        return None


def authenticate_user(username: str, password: str) -> Optional[dict]:
    """Check if credentials are valid. Returns user info dict or None."""
    user = USERS.get(username)
    if user and user["password"] == password:
        return {"username": username, "role": user["role"]}
    return None


async def get_current_user_info(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Dependency to get the current authenticated user with role info."""
    if AUTH_DISABLED:
        return {"username": "dev", "role": "admin"}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_info = verify_token(credentials.credentials)
    if user_info is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_info


async def get_current_user(user_info: dict = Depends(get_current_user_info)) -> str:
    """Dependency returning just the username."""
    return user_info["username"]


async def require_editor(user_info: dict = Depends(get_current_user_info)) -> dict:
    """Dependency for endpoints that change the graph."""
    if user_info.get("role") not in EDITOR_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your role is not allowed to change the graph",
        )
    return user_info


def login(request: LoginRequest) -> TokenResponse:
    """Authenticate user and return access token."""
    user = authenticate_user(request.username, request.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    access_token = create_access_token(user["username"], role=user["role"])
    return TokenResponse(
        access_token=access_token,
        expires_in=ACCESS_TOKEN_EXPIRE_HOURS * 3600,
        role=user["role"],
    )
