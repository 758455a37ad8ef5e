from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.models.user import User
from dnsguard.security import verify_password

log = logging.getLogger(__name__)

router = APIRouter()


def get_current_user(request: Request, db: Session) -> User | None:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return db.get(User, int(user_id))


@router.post("/login")
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.username == username).one_or_none()
    if not user or not verify_password(password, user.password_hash):
        log.warning(f"Failed login for {username}")
        return JSONResponse({"error": "Invalid credentials"}, status_code=401)

    request.session["user_id"] = user.id
    user.last_login = datetime.now(timezone.utc)
    db.commit()
    return {"ok": True, "username": user.username, "role": user.role}


@router.get("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}
