"""Heartbeat agent run next to a service node.

Registers the node on start, renews it every HEARTBEAT_INTERVAL seconds and
unregisters it when stopped. Registry outages are logged and retried on the
next tick, so a node that loses the registry rejoins on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
import asyncio
import logging
import os

import httpx

logger = logging.getLogger(__name__)


@dataclass
class AgentConfig:
    registry_url: str
    service_name: str
    address: str
    interval: float = 60
    timeout: float = 3

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            registry_url=os.getenv("REGISTRY_URL", "http://127.0.0.1:9000"),
            service_name=os.getenv("SERVICE_NAME", "demo"),
            address=os.getenv("ADDRESS", "http://127.0.0.1:9101"),
            interval=float(os.getenv("HEARTBEAT_INTERVAL", "60")),
        )


class HeartbeatAgent:
    def __init__(self, config: AgentConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._stop = asyncio.Event()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.registry_url,
            timeout=self.config.timeout,
            transport=self._transport,
        )

    def _body(self) -> dict:
        return {"serviceName": self.config.service_name, "address": self.config.address}

    async def beat_once(self) -> dict:
        async with self._client() as client:
            r = await client.post("/heartbeat", json=self._body())
            r.raise_for_status()
            return r.json()["data"]

    async def unregister(self) -> bool:
        async with self._client() as client:
            r = await client.post("/unregister", json=self._body())
        if r.status_code == 404:
            return False
        r.raise_for_status()
        return True

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        try:
            while not self._stop.is_set():
                try:
                    data = await self.beat_once()
                    if data["operationType"] == "register":
                        logger.info("registered %s as %s", self.config.address, self.config.service_name)
                except httpx.HTTPError as e:
                    logger.warning("heartbeat failed: %s", e)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.config.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            try:
                await self.unregister()
            except httpx.HTTPError as e:
                logger.warning("unregister failed: %s", e)


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    try:
        asyncio.run(HeartbeatAgent(AgentConfig.from_env()).run())
    except KeyboardInterrupt:
        pass
