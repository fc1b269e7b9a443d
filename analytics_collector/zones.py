"""
区域列表

- StaticZoneLister: 直接使用配置中的区域 ID
- AccountZoneLister: 通过 REST API 分页列出账户下的全部区域
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .errors import DecodeError, PayloadError, TransportError
from .models import Zone
from .query_executor import decode_json, unexpected_status

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class ZoneItem(BaseModel):
    id: str
    name: str = ""


class ResultInfo(BaseModel):
    page: int = 1
    total_pages: int = 1


class ZonesEnvelope(BaseModel):
    """REST v4 响应外壳"""
    success: bool = True
    errors: List[dict] = Field(default_factory=list)
    result: List[ZoneItem] = Field(default_factory=list)
    result_info: Optional[ResultInfo] = None


class ZoneLister:
    """区域列表接口"""

    async def list_zones(self) -> List[Zone]:
        raise NotImplementedError


class StaticZoneLister(ZoneLister):
    """固定区域列表（名称即 ID）"""

    def __init__(self, zone_ids: List[str]):
        self.zones = [Zone(id=zone_id, name=zone_id) for zone_id in zone_ids]

    async def list_zones(self) -> List[Zone]:
        return list(self.zones)


class AccountZoneLister(ZoneLister):
    """账户下的全部区域"""

    def __init__(
        self,
        api_token: str,
        account_id: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        per_page: int = 50,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.account_id = account_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.per_page = per_page
        self.transport = transport

    async def list_zones(self) -> List[Zone]:
        """
        分页拉取区域列表

        Raises:
            CollectorError: 传输、状态码、响应内容错误
        """
        zones: List[Zone] = []
        page = 1
        headers = {"Authorization": f"Bearer {self.api_token}"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                params = {"account.id": self.account_id, "page": page, "per_page": self.per_page}
                try:
                    response = await client.get(f"{self.api_base}/zones", headers=headers, params=params)
                except httpx.TransportError as e:
                    raise TransportError(f"list zones: {e!r}") from e

                if response.status_code != 200:
                    raise unexpected_status(response)

                try:
                    envelope = ZonesEnvelope.model_validate(decode_json(response))
                except ValidationError as e:
                    raise DecodeError(f"decode zones: {e}") from e

                if not envelope.success or envelope.errors:
                    raise PayloadError(envelope.errors or [{"message": "success=false"}])

                zones.extend(Zone(id=item.id, name=item.name) for item in envelope.result)

                total_pages = envelope.result_info.total_pages if envelope.result_info else 1
                if page >= total_pages:
                    break
                page += 1

        logger.debug(f"Listed {len(zones)} zones for account {self.account_id}")
        return zones
