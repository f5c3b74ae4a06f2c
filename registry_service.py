from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import logging
import os

from errors import RegistryError
from kv_store import HttpKV, KVStore, MemoryKV
from ledger import Outcome, ServiceLedger
from nodes import now_ms
from settings import RegistrySettings
from sweep import SweepCoordinator

logger = logging.getLogger(__name__)

KV_STORE_URL = os.getenv("KV_STORE_URL")  # unset -> in-process store

MESSAGES = {
    Outcome.REGISTER: "node registered (first time or rejoined after expiry)",
    Outcome.HEARTBEAT: "heartbeat updated",
}


class HeartbeatRequest(BaseModel):
    serviceName: str = Field(min_length=1)
    address: str = Field(min_length=1)


def default_store() -> KVStore:
    if KV_STORE_URL:
        return HttpKV(KV_STORE_URL)
    return MemoryKV()


def create_app(store: KVStore | None = None, settings: RegistrySettings | None = None,
               clock=now_ms) -> FastAPI:
    app = FastAPI(title="Service Registry")
    settings = settings or RegistrySettings.from_env()
    ledger = ServiceLedger(store or default_store(), settings, clock=clock)
    sweeper = SweepCoordinator(ledger)
    app.state.ledger = ledger
    app.state.sweeper = sweeper

    # missing / empty fields never reach the ledger
    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        return JSONResponse(
            status_code=400,
            content={"code": 400, "message": f"missing or invalid: {', '.join(fields)}", "error": "bad_request"},
        )

    @app.exception_handler(RegistryError)
    async def registry_error(request: Request, exc: RegistryError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.status_code, "message": str(exc), "error": exc.kind},
        )

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.exception("%s %s failed", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"code": 500, "message": "operation failed", "error": RegistryError.kind},
        )

    # register or renew a node: first call registers, later calls renew,
    # a call after expiry registers again
    @app.post("/heartbeat")
    async def heartbeat(req: HeartbeatRequest):
        result = await ledger.upsert_heartbeat(req.serviceName, req.address)
        return {
            "code": 200,
            "message": MESSAGES[result.outcome],
            "data": {
                "serviceName": result.service,
                "address": result.address,
                "lastHeartbeat": result.last_heartbeat,
                "nextDeadline": result.next_deadline,
                "operationType": result.outcome.value,
            },
        }

    # active nodes of one service; expired nodes are dropped on the way
    @app.get("/discover")
    async def discover(serviceName: str = Query(min_length=1)):
        active = await ledger.list_active(serviceName)
        return {
            "code": 200,
            "message": "ok",
            "data": {
                "serviceName": serviceName,
                "activeCount": len(active),
                "activeAddresses": [n.address for n in active],
                "nodes": [n.model_dump(by_alias=True) for n in active],
            },
        }

    @app.post("/unregister")
    async def unregister(req: HeartbeatRequest):
        await ledger.remove_node(req.serviceName, req.address)
        return {"code": 200, "message": "node unregistered"}

    # low-frequency: also sweeps every service
    @app.get("/health")
    async def health():
        report = await sweeper.sweep_all()
        return {
            "code": 200,
            "message": "registry ok",
            "timestamp": clock(),
            "heartbeatExpire": settings.heartbeat_expire_seconds,
            "kvTtl": settings.store_ttl_seconds,
            "sweep": report.to_dict(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host="127.0.0.1", port=int(os.getenv("PORT", "9000")))
