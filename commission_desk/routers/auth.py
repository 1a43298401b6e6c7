"""Authentication routes and session management."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from commission_desk.auth import User
from commission_desk.config import get_settings
from commission_desk.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


@router.post("/login")
def login(
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_session),
):
    """Verify credentials and set the session cookie."""
    user = db.query(User).filter(User.username == username).first()
    if not user or not user.verify_password(password):
        logger.warning("Failed login for %r", username)
        raise HTTPException(status_code=401, detail="Invalid username or password")

    response = JSONResponse({"id": user.id, "username": user.username, "role": user.role})
    response.set_cookie(
        key="user_id",
        value=str(user.id),
        httponly=True,
        path="/",
        secure=not get_settings().is_development,
        samesite="lax",
        max_age=86400,  # 24 hours
    )
    return response


@router.get("/logout")
def logout():
    """Clear the session cookie."""
    response = JSONResponse({"status": "logged_out"})
    response.delete_cookie("user_id")
    return response


def get_current_user(request: Request, db: Session = Depends(get_session)) -> User:
    """Dependency to get current authenticated user."""
    user_id = request.cookies.get("user_id")

    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = int(user_id)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.query(User).filter(User.id == user_id).first()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is admin."""
    if not user.is_admin():
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
