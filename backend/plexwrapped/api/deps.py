"""Shared request dependencies: settings and the caller gate.

Identity headers are issued by whatever sits in front of the API; here they
are only compared.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from plexwrapped.config import Settings, settings


def get_settings() -> Settings:
    return settings


@dataclass
class Caller:
    is_admin: bool
    user_id: Optional[int]

    def can_access(self, user_id: int) -> bool:
        return self.is_admin or self.user_id == user_id


async def get_caller(
    x_admin_token: Optional[str] = Header(None),
    x_user_id: Optional[int] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Caller:
    is_admin = bool(settings.admin_token) and x_admin_token == settings.admin_token
    return Caller(is_admin=is_admin, user_id=x_user_id)


async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return caller


def ensure_access(caller: Caller, user_id: int) -> None:
    if not caller.can_access(user_id):
        raise HTTPException(status_code=401, detail="Unauthorized")
