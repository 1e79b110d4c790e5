from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from doosr.error_handlers import register_error_handlers
from doosr.errors import NotFoundError


def _app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/missing-record")
    async def missing_record():
        raise NotFoundError("Item not found")

    @app.get("/missing-key")
    async def missing_key():
        return {}["missing_field"]

    @app.get("/bad-index")
    async def bad_index():
        return [][3]

    return app


async def _get(path: str):
    transport = ASGITransport(app=_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        return await ac.get(path)


async def test_not_found_error_maps_to_404():
    response = await _get("/missing-record")
    assert response.status_code == 404
    assert response.json() == {"detail": "Item not found"}


async def test_key_error_is_an_internal_error():
    response = await _get("/missing-key")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal error"}


async def test_index_error_is_an_internal_error():
    response = await _get("/bad-index")
    assert response.status_code == 500
