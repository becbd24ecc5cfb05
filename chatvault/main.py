import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from dotenv import load_dotenv

load_dotenv()

from . import config
from .db import DB, init_db, writer
from .errors import (
    ChatVaultError, ConversationNotFound, DuplicateTag, ExportImportError, ImportCancelled,
    InvalidTag, StorageError,
)
from .ingest_chatgpt import clear_data, ingest_export, load_all
from .query import RecentList, filter_by_search, filter_by_tag, group_by_folder, perform_search
from .tasks import get_import_runner, shutdown_import_runner
from .text import normalize_tag
from .tree import conversation_messages

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.ensure_directories_exist()
    applied = init_db(config.DB_PATH)
    logging.info("store ready: %s (migrations applied: %s)", config.DB_PATH, applied or "none")
    yield
    shutdown_import_runner()


app = FastAPI(title="ChatVault API", lifespan=lifespan)

recent_folders = RecentList(config.RECENT_LIMIT)
recent_tags = RecentList(config.RECENT_LIMIT)

# most specific first
ERROR_STATUS = [
    (ExportImportError, 400),
    (InvalidTag, 400),
    (ConversationNotFound, 404),
    (DuplicateTag, 409),
    (ImportCancelled, 409),
    (StorageError, 500),
]


@app.exception_handler(ChatVaultError)
async def chatvault_error_handler(request: Request, exc: ChatVaultError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


class TagReq(BaseModel):
    tag: str = Field(..., max_length=200)


class IngestReq(BaseModel):
    root_path: str


def present_conversation(c, include_mapping: bool = False) -> dict:
    d = c.to_dict()
    if include_mapping:
        d["mapping"] = c.mapping
    return d


def present_import(result) -> dict:
    return {
        **result.summary(),
        "conversations": [present_conversation(c) for c in result.conversations],
    }


@app.get("/healthz")
async def healthz():
    return {"ok": True, "config": config.get_config_summary()}


@app.post("/import")
async def import_export(request: Request):
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Export exceeds {config.MAX_UPLOAD_MB} MB")
    body = await request.body()
    if len(body) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Export exceeds {config.MAX_UPLOAD_MB} MB")
    t0 = time.time()
    job = get_import_runner().submit(body, config.DB_PATH)
    try:
        result = await run_in_threadpool(job.result)
    finally:
        logging.info("import bytes=%s state=%s dur=%.3fs", len(body), job.state.value, time.time() - t0)
    return present_import(result)


@app.post("/import/path")
async def import_from_path(req: IngestReq):
    try:
        result = await run_in_threadpool(ingest_export, req.root_path, config.DB_PATH)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return present_import(result)


@app.post("/clear")
async def clear():
    conversations = await run_in_threadpool(clear_data, config.DB_PATH)
    recent_folders.clear()
    recent_tags.clear()
    return {"conversations": [present_conversation(c) for c in conversations]}


@app.get("/conversations")
async def list_conversations(tag: Optional[str] = None, q: Optional[str] = None):
    conversations = load_all(config.DB_PATH)
    if tag:
        recent_tags.touch(tag)
    conversations = filter_by_search(filter_by_tag(conversations, tag), q)
    return {"conversations": [present_conversation(c) for c in conversations]}


def _get_or_404(conversation_id: str):
    with DB(config.DB_PATH) as db:
        convo = db.get_conversation(conversation_id)
    if convo is None:
        raise ConversationNotFound(conversation_id)
    return convo


@app.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    return present_conversation(_get_or_404(conversation_id), include_mapping=True)


@app.get("/conversations/{conversation_id}/messages")
async def get_messages(conversation_id: str):
    convo = _get_or_404(conversation_id)
    return {
        "conversation_id": convo.id,
        "title": convo.title,
        "messages": [m.to_dict() for m in conversation_messages(convo)],
    }


def _add_tag(conversation_id: str, tag: str) -> dict:
    with writer(config.DB_PATH) as db:
        tag = db.add_tag(tag, conversation_id)
        tags = db.fetch_tags(conversation_id)
    recent_tags.touch(tag)
    return {"conversation_id": conversation_id, "tags": tags}


def _remove_tag(conversation_id: str, tag: str) -> dict:
    with writer(config.DB_PATH) as db:
        removed = db.remove_tag(tag, conversation_id)
        tags = db.fetch_tags(conversation_id)
        still_used = db.fetch_all_tags()
    tag = normalize_tag(tag)
    if removed and tag not in still_used:
        recent_tags.discard(tag)
    return {"conversation_id": conversation_id, "removed": removed, "tags": tags}


# Tag writes wait on the writer lock, which an import holds for its whole run
@app.post("/conversations/{conversation_id}/tags")
async def add_tag(conversation_id: str, req: TagReq):
    return await run_in_threadpool(_add_tag, conversation_id, req.tag)


@app.delete("/conversations/{conversation_id}/tags/{tag}")
async def remove_tag(conversation_id: str, tag: str):
    return await run_in_threadpool(_remove_tag, conversation_id, tag)


@app.get("/tags")
async def list_tags():
    with DB(config.DB_PATH) as db:
        return {"tags": db.fetch_all_tags()}


@app.get("/folders")
async def list_folders():
    with DB(config.DB_PATH) as db:
        conversations = db.fetch_all_conversations()
        folders = db.fetch_folders()
    groups, ungrouped = group_by_folder(conversations, folders)
    return {
        "folders": [
            {**f.to_dict(), "conversations": [present_conversation(c) for c in members]}
            for f, members in groups
        ],
        "ungrouped": [present_conversation(c) for c in ungrouped],
    }


@app.post("/folders/{folder_id}/open")
async def open_folder(folder_id: str):
    with DB(config.DB_PATH) as db:
        known = {f.id for f in db.fetch_folders()}
    if folder_id not in known:
        raise HTTPException(status_code=404, detail=f"Folder {folder_id} not found")
    return {"recent_folders": recent_folders.touch(folder_id)}


@app.get("/search")
async def search(q: str = "", tag: Optional[str] = None):
    t0 = time.time()
    hits = {}
    try:
        conversations = filter_by_tag(load_all(config.DB_PATH), tag) if tag else None
        hits = perform_search(q, conversations, config.DB_PATH)
        return {"query": q, "hits": [h.to_dict() for h in hits.values()]}
    finally:
        logging.info("search hits=%s dur=%.3fs", len(hits), time.time() - t0)


@app.get("/recent")
async def recent():
    return {"folders": recent_folders.items(), "tags": recent_tags.items()}


def run():
    """Serve the API on localhost (``chatvault-api``)."""
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=config.PORT)
