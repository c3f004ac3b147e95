"""
dependencies.py
---------------
FastAPI dependency injection for the acting company.

Flow:
  1. HTTPBearer extracts the Bearer token from the Authorization header.
  2. decode_access_token validates and parses the JWT (no DB round-trip).
  3. get_current_company checks the token's company_id against the
     companies table and binds it to the log context.

The company_id returned here scopes every binding and record query; a
client cannot choose its tenant through a path or query parameter.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.logging import bind_company, get_logger
from erp_directory.core.security import decode_access_token
from erp_directory.db.session import get_db
from erp_directory.models.company import Company

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_company(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> str:
    """
    Return the company id the request acts for.
    Raises 401 if the token is missing, invalid, or names an unknown company.
    """
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise _CREDENTIALS_EXCEPTION

    company_id = payload.get("company_id")
    if not company_id:
        raise _CREDENTIALS_EXCEPTION

    # Re-verify against the DB so tokens of removed companies are rejected
    if await db.get(Company, company_id) is None:
        logger.warning("Company from valid JWT not found in DB", company_id=company_id)
        raise _CREDENTIALS_EXCEPTION

    bind_company(company_id)
    return company_id

