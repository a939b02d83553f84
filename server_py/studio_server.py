import os
import time
import uuid
import base64
import random
import datetime
import logging
from typing import Literal

import requests
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import studio_config
import gemini_client
import freepik_client
from studio_config import get_db, init_database
from studio_models import ImageRecord, ChatRecord, CodeRecord, MediaRecord
from studio_user_service import router as user_router, gate_generation, increment_generation_count
from conversation_store import get_conversation_store
from freepik_client import FreepikConfigError, FreepikError, MediaTaskType, SOUND_TASK, VIDEO_TASK
from gemini_client import GeminiError
from task_poller import PollOutcome, TaskStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("StudioServer")

app = FastAPI(title="GenStudio Server", description="Chat, code, image, video and sound generation")


@app.middleware("http")
async def _log_incoming(request: Request, call_next):
    start = time.time()
    rid = f"gs_{int(start * 1000)}_{random.randint(1000, 9999)}"
    logger.info("API IN rid=%s method=%s path=%s", rid, request.method, request.url.path)
    resp = await call_next(request)
    logger.info(
        "API OUT rid=%s method=%s path=%s status=%s ms=%s",
        rid,
        request.method,
        request.url.path,
        getattr(resp, "status_code", None),
        int((time.time() - start) * 1000),
    )
    return resp


origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(user_router)


@app.exception_handler(RequestValidationError)
async def _invalid_payload(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "invalid_payload", "errors": jsonable_encoder(exc.errors())},
    )


@app.on_event("startup")
def _startup_init():
    started = time.time()
    ok = init_database()
    logger.info("STARTUP db_ready=%s ms=%s", ok, int((time.time() - started) * 1000))


@app.get("/api/health")
def health():
    return {"status": "ok", "ts": int(time.time() * 1000)}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _save_record(db, record, label: str) -> bool:
    """Artifact history is best effort; a failed insert never fails the request."""
    try:
        db.add(record)
        db.commit()
        logger.info("DB write %s id=%s user_id=%s", label, record.id, record.user_id)
        return True
    except Exception as e:
        db.rollback()
        logger.error("DB write %s failed id=%s err=%s", label, getattr(record, "id", None), str(e))
        return False


# -----------------------------------------------------------------------------
# Gemini: chat, code, music
# -----------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    conversationId: str = Field(default="default", min_length=1, max_length=128)


@app.post("/api/openai/chat")
def chat(req: ChatRequest, request: Request, db=Depends(get_db)):
    user_id, _ = gate_generation(request, db)
    store = get_conversation_store(
        db,
        backend=studio_config.CONVERSATION_STORE,
        limit=studio_config.CHAT_HISTORY_LIMIT,
    )
    history = store.get(user_id, req.conversationId)

    try:
        reply = gemini_client.chat_reply(history, req.message)
    except GeminiError as e:
        logger.error("Chat failed user_id=%s conversation_id=%s err=%s", user_id, req.conversationId, str(e))
        raise HTTPException(status_code=502, detail="chat_generation_failed")

    history_length = store.extend(
        user_id,
        req.conversationId,
        [
            {"role": "user", "content": req.message},
            {"role": "assistant", "content": reply},
        ],
    )
    _save_record(
        db,
        ChatRecord(id=_new_id("chat"), user_id=user_id, prompt=req.message, response=reply),
        "chats",
    )
    increment_generation_count(db, user_id, 1)
    return {"message": reply, "conversationId": req.conversationId, "historyLength": history_length}


class CodegenRequest(BaseModel):
    prompt: str = Field(min_length=1)


@app.post("/api/openai/codegen")
def codegen(req: CodegenRequest, request: Request, db=Depends(get_db)):
    user_id, _ = gate_generation(request, db)
    try:
        code = gemini_client.generate_code(req.prompt)
    except GeminiError as e:
        logger.error("Codegen failed user_id=%s err=%s", user_id, str(e))
        raise HTTPException(status_code=502, detail="code_generation_failed")

    _save_record(db, CodeRecord(id=_new_id("code"), user_id=user_id, prompt=req.prompt, response=code), "codes")
    increment_generation_count(db, user_id, 1)
    return {"code": code, "model": studio_config.GEMINI_TEXT_MODEL}


class MusicRequest(BaseModel):
    prompt: str = Field(min_length=1)
    seconds: int = Field(default=10, ge=1, le=30)


def _record_music(db, user_id: str, prompt: str, audio_url: str, elapsed_ms: int) -> None:
    _save_record(
        db,
        MediaRecord(
            id=_new_id("music"),
            user_id=user_id,
            kind="music",
            prompt=prompt,
            status=TaskStatus.COMPLETED.value,
            result_url=audio_url,
            attempts=1,
            elapsed_ms=elapsed_ms,
        ),
        "media",
    )
    increment_generation_count(db, user_id, 1)


@app.post("/api/openai/music")
async def music(req: MusicRequest, request: Request, db=Depends(get_db)):
    # Clerk lookups and DB work are blocking; keep them off the event loop
    user_id, _ = await run_in_threadpool(gate_generation, request, db)
    await run_in_threadpool(db.commit)
    started = time.time()
    try:
        pcm = await gemini_client.generate_music(req.prompt, seconds=req.seconds)
    except GeminiError as e:
        logger.error("Music failed user_id=%s err=%s", user_id, str(e))
        raise HTTPException(status_code=502, detail=str(e) or "music_generation_failed")

    wav = gemini_client.pcm_to_wav(pcm)
    audio_url = f"data:audio/wav;base64,{base64.b64encode(wav).decode('ascii')}"
    await run_in_threadpool(
        _record_music, db, user_id, req.prompt, audio_url, int((time.time() - started) * 1000)
    )
    return {"success": True, "audio_url": audio_url, "duration": req.seconds, "prompt": req.prompt}


# -----------------------------------------------------------------------------
# Freepik: images
# -----------------------------------------------------------------------------

class ImageOptions(BaseModel):
    size: Literal["square_1_1", "portrait_2_3", "landscape_16_9", "tall_9_16"] = "square_1_1"


class ImageRequest(BaseModel):
    prompt: str = Field(min_length=3)
    num_images: int = Field(default=1, ge=1, le=4)
    image: ImageOptions | None = None
    guidance_scale: float = Field(default=1.0, ge=0, le=2)
    filter_nsfw: bool = True


def _freepik_or_500(key_id: str | None = None):
    try:
        return freepik_client.get_freepik_client(key_id)
    except FreepikConfigError as e:
        logger.error("Freepik client unavailable key_id=%s err=%s", key_id or "", str(e))
        if key_id:
            raise HTTPException(status_code=400, detail="unknown_key_id")
        raise HTTPException(status_code=500, detail="missing_freepik_config")


@app.post("/api/freepik/images")
def generate_images(req: ImageRequest, request: Request, db=Depends(get_db)):
    user_id, _ = gate_generation(request, db)
    client = _freepik_or_500()
    size = req.image.size if req.image else "square_1_1"
    try:
        payload, images = client.generate_images(
            req.prompt,
            num_images=req.num_images,
            size=size,
            guidance_scale=req.guidance_scale,
            filter_nsfw=req.filter_nsfw,
        )
    except FreepikError as e:
        raise HTTPException(status_code=e.status_code, detail={"error": "freepik_api_error", "message": str(e)})
    except requests.RequestException as e:
        logger.error("Image generation failed user_id=%s err=%s", user_id, str(e))
        raise HTTPException(status_code=500, detail={"error": "server_error", "message": str(e)})

    image_urls = [f"data:image/png;base64,{b64}" for b64 in images]
    saved = _save_record(
        db,
        ImageRecord(id=_new_id("img"), user_id=user_id, prompt=req.prompt, image_urls=image_urls),
        "images",
    )
    increment_generation_count(db, user_id, req.num_images)
    response = dict(payload) if isinstance(payload, dict) else {"data": payload}
    response.update({"savedToDatabase": saved, "imageCount": len(images)})
    return response


# -----------------------------------------------------------------------------
# Freepik: video and sound effects (create task, then poll)
# -----------------------------------------------------------------------------

class VideoRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=2000)


class SoundRequest(BaseModel):
    prompt: str = Field(min_length=1)


_LABELS = {"video": "Video", "sound": "Sound"}


def _run_media_task(task_type: MediaTaskType, prompt: str, request: Request, db):
    user_id, _ = gate_generation(request, db)
    # no connection is held while talking to Freepik; polling can take minutes
    db.commit()
    client = _freepik_or_500()

    try:
        task_id = client.create_task(task_type, prompt)
    except FreepikError as e:
        logger.error("Task creation failed kind=%s status=%s payload=%s", task_type.kind, e.status_code, e.payload)
        return JSONResponse(status_code=e.status_code, content={"error": "api_error", "details": e.payload})
    except requests.RequestException as e:
        logger.error("Task creation failed kind=%s err=%s", task_type.kind, str(e))
        return JSONResponse(status_code=500, content={"error": "server_error", "message": str(e)})

    outcome: PollOutcome = client.wait_for_task(task_type, task_id)
    logger.info(
        "TASK %s outcome task_id=%s status=%s attempts=%s elapsed_ms=%s transient_errors=%s",
        task_type.kind,
        task_id,
        outcome.status.value,
        outcome.attempts,
        outcome.elapsed_ms,
        outcome.transient_errors,
    )
    _save_record(
        db,
        MediaRecord(
            id=_new_id(task_type.kind),
            user_id=user_id,
            kind=task_type.kind,
            prompt=prompt,
            task_id=task_id,
            status=outcome.status.value,
            result_url=outcome.result,
            attempts=outcome.attempts,
            elapsed_ms=outcome.elapsed_ms,
        ),
        "media",
    )

    base = {
        "task_id": task_id,
        "key_id": client.key_id,
        "status": outcome.status.value,
        "wait_time_seconds": outcome.wait_time_seconds,
        "attempts": outcome.attempts,
    }
    label = _LABELS.get(task_type.kind, task_type.kind)
    if outcome.status == TaskStatus.COMPLETED:
        increment_generation_count(db, user_id, 1)
        return {"success": True, task_type.result_field: outcome.result, **base}
    if outcome.status == TaskStatus.FAILED:
        return {"success": False, "error": f"{label} generation failed", **base}
    return JSONResponse(
        status_code=408,
        content={
            "success": False,
            "message": f"{label} generation timed out after {outcome.wait_time_seconds} seconds",
            **base,
        },
    )


def _check_media_task(task_type: MediaTaskType, task_id: str | None, key_id: str | None):
    if not task_id:
        return JSONResponse(
            status_code=400,
            content={"error": "task_id_required", "message": "Task ID is required"},
        )
    client = _freepik_or_500(key_id)
    try:
        data = client.fetch_task(task_type, task_id)
    except FreepikError as e:
        return JSONResponse(status_code=e.status_code, content={"error": "status_check_failed", "status": e.status_code})
    except Exception as e:
        logger.error("Manual status check failed kind=%s task_id=%s err=%s", task_type.kind, task_id, str(e))
        return JSONResponse(status_code=500, content={"error": "check_error", "message": str(e)})

    report = freepik_client.parse_task_status(data)
    return {
        "task_id": task_id,
        "status": report.status,
        task_type.result_field: report.result,
        "has_result": bool(report.result),
        "data": data,
        "checked_at": datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@app.post("/api/freepik/video")
def generate_video(req: VideoRequest, request: Request, db=Depends(get_db)):
    return _run_media_task(VIDEO_TASK, req.prompt, request, db)


@app.get("/api/freepik/video")
def check_video(task_id: str | None = None, key_id: str | None = None):
    return _check_media_task(VIDEO_TASK, task_id, key_id)


@app.post("/api/freepik/music")
def generate_sound(req: SoundRequest, request: Request, db=Depends(get_db)):
    return _run_media_task(SOUND_TASK, req.prompt, request, db)


@app.get("/api/freepik/music")
def check_sound(task_id: str | None = None, key_id: str | None = None):
    return _check_media_task(SOUND_TASK, task_id, key_id)


def _run():
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    _run()
