from __future__ import annotations

from typing import Generator

from fastapi import Header

from backend.app.db.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_actor: str | None = Header(default=None, alias="X-Actor")) -> str | None:
    if x_actor and x_actor.strip():
        return x_actor.strip()[:128]
    return None
