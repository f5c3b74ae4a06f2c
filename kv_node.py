from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import logging
import os

from errors import WriteConflict
from kv_store import MemoryKV

logger = logging.getLogger(__name__)

NODE_ID = os.getenv("NODE_ID", "kv-1")


class PutRequest(BaseModel):
    value: str
    ttl: int = Field(gt=0)
    if_version: int | None = None


def create_app(store: MemoryKV | None = None) -> FastAPI:
    app = FastAPI(title="KV Node")
    store = store or MemoryKV()
    app.state.store = store

    @app.get("/health")
    async def health():
        return {"status": "ok", "node_id": NODE_ID}

    # keys under prefix, like ls
    @app.get("/kv")
    async def list_keys(prefix: str = ""):
        keys = await store.list_keys(prefix)
        return {"count": len(keys), "keys": keys, "node_id": NODE_ID}

    # key is a query parameter: service names may contain any character
    @app.get("/kv/entry")
    async def get_value(key: str):
        entry = await store.get(key)
        if entry is None:
            raise HTTPException(status_code=404, detail="Not found")
        return {"key": key, "value": entry.value, "version": entry.version}

    # create or overwrite; if_version makes it conditional (0 = must not exist)
    @app.put("/kv/entry")
    async def put_value(key: str, req: PutRequest):
        try:
            version = await store.put(key, req.value, req.ttl, expected_version=req.if_version)
        except WriteConflict as e:
            logger.debug("conditional put rejected: %s", e)
            raise HTTPException(status_code=409, detail=str(e))
        return {"status": "stored", "node_id": NODE_ID, "version": version}

    @app.delete("/kv/entry")
    async def delete_value(key: str, if_version: int | None = None):
        try:
            existed = await store.delete(key, expected_version=if_version)
        except WriteConflict as e:
            logger.debug("conditional delete rejected: %s", e)
            raise HTTPException(status_code=409, detail=str(e))
        if not existed:
            raise HTTPException(status_code=404, detail="Not found")
        return {"status": "deleted", "node_id": NODE_ID}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host="127.0.0.1", port=int(os.getenv("PORT", "9100")))
