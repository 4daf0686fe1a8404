# routers/users.py
import logging

from fastapi import APIRouter, HTTPException, Response
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from db import SessionDep
from models import User
from schemas import UserCreate

router = APIRouter(tags=["users"])

logger = logging.getLogger(__name__)


@router.post("/", response_model=User, status_code=201)
def upsert_user(user_in: UserCreate, session: SessionDep, response: Response):
    """
    Record an identity on first contact. Calling again with the same userId
    returns the stored record unchanged.
    """
    existing = session.exec(
        select(User).where(User.user_id == user_in.user_id)
    ).first()

    if existing:
        response.status_code = 200
        return existing

    user = User(user_id=user_in.user_id, role=user_in.role)
    session.add(user)

    try:
        session.commit()
    except IntegrityError:
        # Someone registered the same id between our lookup and insert
        session.rollback()
        response.status_code = 200
        return session.exec(
            select(User).where(User.user_id == user_in.user_id)
        ).one()

    session.refresh(user)
    logger.info("Registered user %s as %s", user.user_id, user.role.value)
    return user


@router.get("/{user_id}", response_model=User)
def get_user(user_id: str, session: SessionDep):
    """
    Get a single user by their identity string.
    """
    user = session.exec(select(User).where(User.user_id == user_id)).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user
