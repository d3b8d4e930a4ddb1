# imprints/api/auth.py
# Registration and JWT token routes.
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.core import security
from imprints.core.config import settings
from imprints.models.user import RoleEnum, User

router = APIRouter()


@router.post("/register")
async def register(
    email: str,
    password: str,
    name: str | None = None,
    db: AsyncSession = Depends(security.get_db),
):
    """Customer registration: email + password. Admins are created out of band."""
    email = email.strip().lower()
    existing = await db.scalar(select(User).where(User.email == email))
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        email=email,
        hashed_password=security.get_password_hash(password),
        name=name,
        role=RoleEnum.customer,
    )
    db.add(user)
    await db.commit()
    return {"id": user.id, "email": user.email, "role": user.role.value}


@router.post("/token")
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(security.get_db)):
    """OAuth2 password flow; the username field carries the email."""
    user = await db.scalar(select(User).where(User.email == form_data.username.strip().lower()))
    if not user or not user.hashed_password or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect credentials")
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = security.create_access_token(subject=user.id, expires_delta=access_token_expires)
    return {"access_token": token, "token_type": "bearer"}
