import logging

import httpx

from stickershelf.core.errors import HostNotificationError
from stickershelf.core.models import HostPackRecord, StickerPackManifest

logger = logging.getLogger(__name__)


class HostClient:
    """
    与宿主进程的出站交互：
    - 表情包创建/变更后发送单向通知，请宿主重新读取
    - 实时查询某个表情包是否已被宿主登记（白名单状态，不落盘）
    """

    def __init__(
        self,
        base_url: str,
        source_identity: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._source_identity = source_identity
        self._timeout = timeout
        self._transport = transport

    async def notify_pack_changed(self, manifest: StickerPackManifest) -> None:
        record = HostPackRecord(
            pack_id=manifest.identifier,
            source_identity=self._source_identity,
            pack_name=manifest.name,
            publisher=manifest.publisher,
        )
        logger.debug("准备通知宿主: pack=%s", record.pack_id)
        async with self._client() as client:
            try:
                response = await client.post(
                    f"{self._base_url}/sticker_packs/enable",
                    json=record.to_payload(),
                )
            except httpx.HTTPError as exc:
                raise HostNotificationError(f"宿主不可达: {exc}") from exc

        if response.status_code >= 300:
            raise HostNotificationError(
                f"宿主拒绝表情包通知: status={response.status_code} body={response.text[:200]}"
            )
        logger.info("宿主通知已发送: pack=%s", record.pack_id)

    async def is_whitelisted(self, pack_id: str) -> bool:
        """任何失败都按未登记处理。"""
        async with self._client() as client:
            try:
                response = await client.get(
                    f"{self._base_url}/is_whitelisted",
                    params={
                        "authority": self._source_identity,
                        "identifier": pack_id,
                    },
                )
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("查询宿主白名单失败: pack=%s error=%s", pack_id, exc)
                return False

        if response.status_code != 200 or not isinstance(payload, dict):
            logger.warning(
                "宿主白名单查询返回异常: pack=%s status=%s",
                pack_id,
                response.status_code,
            )
            return False

        whitelisted = payload.get("result") in (1, "1", True)
        logger.debug("宿主白名单状态: pack=%s whitelisted=%s", pack_id, whitelisted)
        return whitelisted

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
