import httpx
import pytest
import respx

from catalogsync.ingest.errors import ItemNotFoundError, TerminalExternalError, TransientExternalError
from catalogsync.ingest.marketplace import DetailClient, SearchClient
from catalogsync.settings import SyncSettings

SETTINGS = SyncSettings(
    search_url="https://search.test/amazon/search",
    detail_url="https://search.test/amazon/product",
    api_key="secret",
)


@pytest.mark.asyncio
async def test_search_page_sends_query_and_locale():
    payload = {"results": [{"title": "Acme Phone", "asin": "B0PHONE001"}, "junk"]}
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(SETTINGS.search_url).mock(return_value=httpx.Response(200, json=payload))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            items = await client.search_page("phones under 5000", 2, "400001")
    assert items == [{"title": "Acme Phone", "asin": "B0PHONE001"}]
    params = route.calls.last.request.url.params
    assert params["query"] == "phones under 5000"
    assert params["page"] == "2"
    assert params["pincode"] == "400001"
    assert params["api_key"] == "secret"


@pytest.mark.asyncio
async def test_empty_page_means_end_of_results():
    async with respx.mock() as router:
        router.get(SETTINGS.search_url).mock(return_value=httpx.Response(200, json=[]))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            assert await client.search_page("phones", 9, "110001") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error",
    [
        (429, TransientExternalError),
        (503, TransientExternalError),
        (401, TerminalExternalError),
        (403, TerminalExternalError),
        (400, TerminalExternalError),
    ],
)
async def test_status_mapping(status, error):
    async with respx.mock() as router:
        router.get(SETTINGS.search_url).mock(return_value=httpx.Response(status, json={}))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            with pytest.raises(error):
                await client.search_page("phones", 1, "110001")


@pytest.mark.asyncio
async def test_network_errors_are_transient():
    async with respx.mock() as router:
        router.get(SETTINGS.search_url).mock(side_effect=httpx.ConnectTimeout("slow"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            with pytest.raises(TransientExternalError, match="timeout"):
                await client.search_page("phones", 1, "110001")


@pytest.mark.asyncio
async def test_invalid_json_is_transient():
    async with respx.mock() as router:
        router.get(SETTINGS.search_url).mock(return_value=httpx.Response(200, text="<html>busy</html>"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            with pytest.raises(TransientExternalError):
                await client.search_page("phones", 1, "110001")


@pytest.mark.asyncio
async def test_fetch_detail():
    payload = {"title": "Acme Phone 128GB", "price": "₹4,399"}
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(SETTINGS.detail_url).mock(return_value=httpx.Response(200, json=payload))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = DetailClient(SETTINGS, session=session)
            item = await client.fetch_detail("B0PHONE001")
    assert item["asin"] == "B0PHONE001"
    assert item["price"] == "₹4,399"
    assert route.calls.last.request.url.params["asin"] == "B0PHONE001"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [httpx.Response(404), httpx.Response(200, json={})])
async def test_missing_detail(response):
    async with respx.mock() as router:
        router.get(SETTINGS.detail_url).mock(return_value=response)
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = DetailClient(SETTINGS, session=session)
            with pytest.raises(ItemNotFoundError):
                await client.fetch_detail("B0GONE0000")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [httpx.DecodingError("corrupt gzip body"), httpx.TooManyRedirects("redirect loop")],
)
async def test_other_request_errors_are_transient(error):
    async with respx.mock() as router:
        router.get(SETTINGS.search_url).mock(side_effect=error)
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            client = SearchClient(SETTINGS, session=session)
            with pytest.raises(TransientExternalError, match=error.__class__.__name__):
                await client.search_page("phones", 1, "110001")


@pytest.mark.asyncio
async def test_domain_sent_once():
    async with respx.mock() as router:
        route = router.get(SETTINGS.search_url).mock(return_value=httpx.Response(200, json={"results": []}))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            await SearchClient(SETTINGS, session=session).search_page("phones", 1, "110001")
    params = route.calls.last.request.url.params
    assert params["domain"] == SETTINGS.marketplace_domain
    assert "country" not in params
