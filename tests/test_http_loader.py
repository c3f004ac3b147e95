# tests/test_http_loader.py
import asyncio

import aiohttp
import pytest
from aiohttp import test_utils, web

from erp_directory.cascade.loaders import HttpOptionLoader, OptionLoadError
from erp_directory.cascade.session import CascadeSession, CascadeState

TOKEN = "test-token"


def _authorized(request: web.Request) -> bool:
    return request.headers.get("Authorization") == f"Bearer {TOKEN}"


async def _config(request: web.Request) -> web.Response:
    if not _authorized(request):
        return web.json_response({"detail": "Not authenticated"}, status=401)
    if request.query.get("value") != "salary":
        return web.json_response({"code": "not_found", "detail": "Record not found"}, status=404)
    return web.json_response(
        {
            "enabled": True,
            "dependentFields": [
                {"fieldName": "department", "directoryId": "dir-dep", "required": True},
                {"fieldName": "employee", "directoryId": "dir-emp", "dependsOn": "department"},
            ],
        }
    )


async def _options(request: web.Request) -> web.Response:
    if not _authorized(request):
        return web.json_response({"detail": "Not authenticated"}, status=401)
    directory_id = request.match_info["directory_id"]
    parent = request.query.get("parent_value")
    search = request.query.get("search", "")
    rows = {
        ("dir-dep", None): ["engineering", "sales"],
        ("dir-emp", "engineering"): ["alice", "bob"],
        ("dir-emp", "sales"): ["carol"],
    }.get((directory_id, parent), [])
    return web.json_response(
        [
            {"id": f"id-{v}", "label": v.title(), "value": v}
            for v in rows
            if search.lower() in v
        ]
    )


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(1)
    return web.json_response([])


@pytest.fixture
async def server():
    app = web.Application()
    app.router.add_get(
        "/directories/{directory_id}/fields/{field_id}/cascading-config", _config
    )
    app.router.add_get("/directories/slow/options", _slow)
    app.router.add_get("/directories/{directory_id}/options", _options)
    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest.fixture
def base_url(server) -> str:
    return str(server.make_url(""))


# -----------------------------------------------------------------------------
# 1. Requests and decoding
# -----------------------------------------------------------------------------

async def test_load_config_decodes_camel_case(base_url):
    async with HttpOptionLoader(base_url, TOKEN) as loader:
        config = await loader.load_config("dir-payments", "field-type", "salary")

    assert config.is_active
    assert [d.field_name for d in config.dependent_fields] == ["department", "employee"]
    assert config.dependent_fields[1].depends_on == "department"


async def test_load_options_passes_search_and_parent(base_url):
    async with HttpOptionLoader(base_url, TOKEN) as loader:
        everyone = await loader.load_options("dir-emp", parent_value="engineering")
        bobs = await loader.load_options("dir-emp", search="bo", parent_value="engineering")

    assert [o.value for o in everyone] == ["alice", "bob"]
    assert [o.label for o in bobs] == ["Bob"]


async def test_reuses_a_given_session_without_closing_it(base_url):
    async with aiohttp.ClientSession() as http:
        loader = HttpOptionLoader(base_url, TOKEN, session=http)
        await loader.load_options("dir-dep")
        await loader.close()

        assert not http.closed


# -----------------------------------------------------------------------------
# 2. Failures
# -----------------------------------------------------------------------------

async def test_http_error_becomes_option_load_error(base_url):
    async with HttpOptionLoader(base_url, "wrong") as loader:
        with pytest.raises(OptionLoadError) as exc:
            await loader.load_options("dir-dep")

    assert exc.value.status == 401


async def test_timeout_becomes_option_load_error(base_url):
    async with HttpOptionLoader(base_url, TOKEN, timeout=0.05) as loader:
        with pytest.raises(OptionLoadError) as exc:
            await loader.load_options("slow")

    assert exc.value.status is None


async def test_connection_failure_becomes_option_load_error(server):
    url = str(server.make_url(""))
    await server.close()

    async with HttpOptionLoader(url, TOKEN) as loader:
        with pytest.raises(OptionLoadError):
            await loader.load_options("dir-dep")


async def test_loader_must_be_opened():
    loader = HttpOptionLoader("http://localhost:1", TOKEN)

    with pytest.raises(OptionLoadError):
        await loader.load_options("dir-dep")


# -----------------------------------------------------------------------------
# 3. Driving a session over HTTP
# -----------------------------------------------------------------------------

async def test_session_over_http(base_url):
    async with HttpOptionLoader(base_url, TOKEN) as loader:
        session = CascadeSession(loader, "dir-payments", "field-type", debounce_ms=0)
        await session.select_parent("salary")
        await session.select("department", "sales")

        assert session.state is CascadeState.fields_revealed
        assert [o.value for o in session.fields["employee"].options] == ["carol"]

        await session.select_parent("unknown")
        assert session.config_error is not None
        assert session.state is CascadeState.parent_selected
        await session.close()
