from __future__ import annotations
from uuid import UUID
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from betpool.schemas.auth import Caller
from betpool.security import decode_token

security = HTTPBearer()

async def get_caller(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Caller:
    token = credentials.credentials
    try:
        data = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    try:
        return Caller(user_id=UUID(str(data.get("sub"))))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")
