# tests/test_nexus_client.py
import json
from datetime import datetime, timezone

import httpx
import pytest

from nexustrack.domain.errors import ConfigurationError, UpstreamStructuralError, UpstreamTransientError
from nexustrack.infrastructure.nexus.client import NexusModsClient, build_mods_filter, build_sort, parse_timestamp

API = "https://api.test/v2/graphql"
V1 = "https://api.test/v1"
SINCE = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _client(handler, **kw) -> NexusModsClient:
    return NexusModsClient(api_key="secret", api_url=API, v1_url=V1, transport=httpx.MockTransport(handler), **kw)


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        NexusModsClient(api_key="")


def test_filter_and_sort_shapes():
    mods_filter = build_mods_filter(SINCE, "updatedAt", game_domain="skyrim", updated_only=True, adult=False)
    assert mods_filter == {
        "updatedAt": [{"value": str(int(SINCE.timestamp())), "op": "GT"}],
        "gameDomainName": [{"value": "skyrim", "op": "EQUALS"}],
        "hasUpdated": [{"value": True, "op": "EQUALS"}],
        "adultContent": [{"value": False, "op": "EQUALS"}],
    }
    assert "adultContent" not in build_mods_filter(SINCE)
    assert build_mods_filter(SINCE, uploader_id=51)["uploaderId"] == [{"value": "51", "op": "EQUALS"}]
    assert build_sort("createdAt") == [{"createdAt": {"direction": "ASC"}}]


def test_parse_timestamp_handles_iso_and_unix_seconds():
    assert parse_timestamp("2024-06-01T12:00:00Z") == SINCE
    assert parse_timestamp("2024-06-01T12:00:00") == SINCE
    assert parse_timestamp(int(SINCE.timestamp())) == SINCE
    assert parse_timestamp(str(int(SINCE.timestamp()))) == SINCE
    assert parse_timestamp(None) is None


@pytest.mark.asyncio
async def test_mods_pages_until_total_count():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["apikey"] == "secret"
        variables = json.loads(request.content)["variables"]
        seen.append(variables["offset"])
        nodes = [{"uid": str(i)} for i in range(variables["offset"], min(variables["offset"] + 2, 5))]
        return httpx.Response(200, json={"data": {"mods": {"nodes": nodes, "totalCount": 5}}})

    client = _client(handler, page_size=2)
    mods = await client.new_mods_for_game("skyrim", SINCE)
    await client.aclose()

    assert [m["uid"] for m in mods] == ["0", "1", "2", "3", "4"]
    assert seen == [0, 2, 4]
    assert client.requests_made == 3


@pytest.mark.asyncio
async def test_mods_stop_at_page_cap():
    def handler(request):
        return httpx.Response(200, json={"data": {"mods": {"nodes": [{"uid": "x"}], "totalCount": 100}}})

    client = _client(handler, page_size=1, max_pages=3)
    mods = await client.mods({}, [])
    await client.aclose()
    assert len(mods) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error", [(503, UpstreamTransientError), (429, UpstreamTransientError), (400, UpstreamStructuralError)])
async def test_http_errors_are_classified(status, error):
    client = _client(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(error):
        await client.new_mods_for_game("skyrim", SINCE)
    await client.aclose()


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = _client(handler)
    with pytest.raises(UpstreamTransientError):
        await client.mod("123")
    await client.aclose()


@pytest.mark.asyncio
async def test_graphql_errors_are_structural_unless_missing_is_allowed():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Collection not found", "extensions": {"code": "NOT_FOUND"}}]})

    client = _client(handler)
    assert await client.collection("skyrim", "abc") is None
    with pytest.raises(UpstreamStructuralError):
        await client.collection_revisions("skyrim", "abc")
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_nodes_is_structural():
    client = _client(lambda request: httpx.Response(200, json={"data": {"mods": None}}))
    with pytest.raises(UpstreamStructuralError):
        await client.new_mods_for_game("skyrim", SINCE)
    await client.aclose()


@pytest.mark.asyncio
async def test_mod_files_are_newest_first():
    files = [{"fileId": 1, "date": 100}, {"fileId": 2, "date": 300}, {"fileId": 3, "date": 200}]
    client = _client(lambda request: httpx.Response(200, json={"data": {"modFiles": files}}))
    result = await client.mod_files(1704, 42)
    await client.aclose()
    assert [f["fileId"] for f in result] == [2, 3, 1]


@pytest.mark.asyncio
async def test_find_user_by_id_and_by_name():
    def handler(request):
        body = json.loads(request.content)
        if "id" in body["variables"]:
            return httpx.Response(200, json={"data": {"user": {"memberId": body["variables"]["id"], "name": "Dark0ne"}}})
        return httpx.Response(200, json={"data": {"userByName": {"memberId": 51, "name": body["variables"]["username"]}}})

    client = _client(handler)
    by_id = await client.find_user("51")
    by_name = await client.find_user("Dark0ne")
    await client.aclose()
    assert by_id == {"memberId": 51, "name": "Dark0ne"}
    assert by_name["memberId"] == 51


@pytest.mark.asyncio
async def test_game_lookup_uses_v1_and_missing_game_is_none():
    def handler(request):
        if request.url.path.endswith("/games/skyrim.json"):
            return httpx.Response(200, json={"id": 110, "name": "Skyrim", "domain_name": "skyrim"})
        return httpx.Response(404, json={"code": 404, "message": "No Game Found"})

    client = _client(handler)
    assert (await client.game_info("skyrim"))["domain_name"] == "skyrim"
    assert await client.game_info("nothere") is None
    await client.aclose()
