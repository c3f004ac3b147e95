"""
cascade/loaders.py
------------------
Where a CascadeSession gets its data from.

ServiceOptionLoader  calls the services directly, one database session per
                     call (background jobs, tests, server-side rendering)
HttpOptionLoader     talks to the HTTP API with a bearer token (any remote
                     client)

Both raise OptionLoadError for anything that should become a field-scoped
error in the session rather than a failure of the whole form.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from sqlalchemy.ext.asyncio import async_sessionmaker

from erp_directory.core.errors import DirectoryError
from erp_directory.core.logging import get_logger
from erp_directory.domain.metadata import CascadingConfig, decode_metadata
from erp_directory.services.cascade_engine import CascadeEngine
from erp_directory.services.relation_resolver import Option, RelationResolver

logger = get_logger(__name__)


class OptionLoadError(Exception):
    """Options or config could not be loaded for a field."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class OptionLoader(Protocol):
    async def load_config(
        self, directory_id: str, field_id: str, record_id: str
    ) -> CascadingConfig:
        ...

    async def load_options(
        self,
        directory_id: str,
        search: Optional[str] = None,
        parent_value: Optional[str] = None,
    ) -> List[Option]:
        ...


class ServiceOptionLoader:
    def __init__(self, session_factory: async_sessionmaker, company_id: str) -> None:
        self._session_factory = session_factory
        self.company_id = company_id

    async def load_config(
        self, directory_id: str, field_id: str, record_id: str
    ) -> CascadingConfig:
        async with self._session_factory() as db:
            try:
                return await CascadeEngine.config_for_value(
                    db, directory_id, field_id, record_id, self.company_id
                )
            except DirectoryError as exc:
                raise OptionLoadError(exc.message, exc.status_code) from exc

    async def load_options(
        self,
        directory_id: str,
        search: Optional[str] = None,
        parent_value: Optional[str] = None,
    ) -> List[Option]:
        async with self._session_factory() as db:
            try:
                return await RelationResolver.collect(
                    RelationResolver.resolve_options(
                        db,
                        directory_id,
                        self.company_id,
                        search,
                        parent_value=parent_value,
                    )
                )
            except DirectoryError as exc:
                raise OptionLoadError(exc.message, exc.status_code) from exc


class HttpOptionLoader:
    """
    Loader backed by the HTTP API.

    Usage:
        async with HttpOptionLoader("http://erp.local", token) as loader:
            session = CascadeSession(loader, directory_id, field_id)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpOptionLoader":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    async def _get(self, path: str, params: Dict[str, str]) -> Any:
        if self._session is None:
            raise OptionLoadError("Loader is not open; use 'async with'")
        url = f"{self.base_url}{path}"
        try:
            async with self._session.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning(
                        "Option request failed",
                        url=url,
                        status=response.status,
                    )
                    raise OptionLoadError(
                        f"API error {response.status}: {text}", response.status
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Option request failed", url=url, error=str(exc))
            raise OptionLoadError(str(exc)) from exc

    async def load_config(
        self, directory_id: str, field_id: str, record_id: str
    ) -> CascadingConfig:
        body = await self._get(
            f"/directories/{directory_id}/fields/{field_id}/cascading-config",
            {"value": record_id},
        )
        return decode_metadata(CascadingConfig, body)

    async def load_options(
        self,
        directory_id: str,
        search: Optional[str] = None,
        parent_value: Optional[str] = None,
    ) -> List[Option]:
        params: Dict[str, str] = {}
        if search:
            params["search"] = search
        if parent_value is not None:
            params["parent_value"] = parent_value
        body = await self._get(f"/directories/{directory_id}/options", params)
        return [
            Option(id=item["id"], label=item["label"], value=item["value"])
            for item in body
        ]
