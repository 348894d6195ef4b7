# postflow/dependencies/auth.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from postflow.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_brand(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> str:
    """Brand id taken from the `sub` claim of the bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    brand_id = payload.get("sub")
    if not brand_id or payload.get("type", "access") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return str(brand_id)
