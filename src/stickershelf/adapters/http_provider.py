from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.responses import JSONResponse, Response

from stickershelf.adapters.host_client import HostClient
from stickershelf.core.errors import AssetNotFoundError
from stickershelf.services.provider import (
    METADATA,
    STICKERS,
    QueryResult,
    StickerQueryProtocol,
)


def build_provider_app(
    protocol: StickerQueryProtocol,
    host_client: HostClient | None = None,
) -> FastAPI:
    """把查询协议挂到 HTTP 上，供宿主进程读取。"""
    app = FastAPI(title="stickershelf provider", docs_url=None, redoc_url=None)
    router = APIRouter()

    @router.get("/metadata")
    async def list_packs() -> JSONResponse:
        return _query_response(protocol, await protocol.query(METADATA))

    @router.get("/metadata/{pack_id}")
    async def describe_pack(pack_id: str) -> JSONResponse:
        return _query_response(protocol, await protocol.query(f"{METADATA}/{pack_id}"))

    @router.get("/stickers/{pack_id}")
    async def list_stickers(pack_id: str) -> JSONResponse:
        return _query_response(protocol, await protocol.query(f"{STICKERS}/{pack_id}"))

    @router.get("/stickers_asset/{pack_id}/{file_name}")
    async def fetch_asset(pack_id: str, file_name: str) -> Response:
        try:
            asset = await protocol.open_asset(pack_id, file_name)
        except AssetNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return Response(content=asset.content, media_type=asset.mime_type)

    @router.get("/whitelist/{pack_id}")
    async def whitelist_status(pack_id: str) -> dict[str, object]:
        if host_client is None:
            raise HTTPException(status_code=503, detail="未配置宿主")
        whitelisted = await host_client.is_whitelisted(pack_id)
        return {"identifier": pack_id, "whitelisted": whitelisted}

    app.include_router(router)
    return app


def _query_response(protocol: StickerQueryProtocol, result: QueryResult) -> JSONResponse:
    return JSONResponse(
        {
            "columns": list(result.columns),
            "rows": [list(row) for row in result.rows],
        },
        headers={"X-Content-Type": protocol.get_type(result.notification_path)},
    )
