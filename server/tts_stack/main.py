# =========================
# server/tts_stack/main.py
# =========================
import itertools
from typing import Iterator, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from tts_stack.config import Settings
from tts_stack.engine import Engine, SynthesisError, load_engine
from tts_stack.logging_setup import get_logger
from tts_stack.storage import AudioStore

NO_TEXT = "No text provided"


def _clean_text(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _clean_voice(value) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logger = get_logger("tts_stack", settings.log_dir, level=settings.log_level)
    engine = engine or load_engine(settings)
    store = AudioStore(settings.audio_dir, settings.retention_seconds)

    app = FastAPI(title="TTS API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def cleanup_old_files(request: Request, call_next):
        store.purge_expired()
        return await call_next(request)

    @app.exception_handler(SynthesisError)
    async def synthesis_error(request: Request, exc: SynthesisError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    def synthesize(text: str, voice: Optional[str]) -> bytes:
        try:
            return engine.synthesize(text, voice)
        except SynthesisError:
            raise
        except Exception as e:
            logger.exception("Synthesis failed")
            raise SynthesisError(str(e))

    def open_stream(text: str, voice: Optional[str]) -> Tuple[bytes, Iterator[bytes]]:
        # pull the first chunk here so backend errors become JSON, not a truncated 200
        chunks = engine.stream(text, voice)
        try:
            first = next(chunks, b"")
        except SynthesisError:
            raise
        except Exception as e:
            logger.exception("Synthesis failed")
            raise SynthesisError(str(e))
        return first, chunks

    async def wav_stream(text: str, voice: Optional[str]) -> StreamingResponse:
        first, rest = await run_in_threadpool(open_stream, text, voice)
        logger.info("Streaming speech for %d chars", len(text))
        return StreamingResponse(itertools.chain([first], rest), media_type="audio/wav")

    async def read_payload(request: Request) -> dict:
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @app.get("/")
    def root():
        return {"ok": True, "service": "tts_api", "engine": engine.name}

    @app.post("/api/tts")
    async def generate_speech(request: Request):
        data = await read_payload(request)
        text = _clean_text(data.get("text"))
        if text is None:
            return JSONResponse({"error": NO_TEXT}, status_code=400)

        wav = await run_in_threadpool(synthesize, text, _clean_voice(data.get("voice")))
        filename = store.save(wav)
        logger.info("Generated %s (%d bytes) for %d chars", filename, len(wav), len(text))
        return {"success": True, "filename": filename}

    @app.get("/api/tts")
    async def speech_from_query(text: Optional[str] = None, voice: Optional[str] = None):
        text = _clean_text(text)
        if text is None:
            return JSONResponse({"error": NO_TEXT}, status_code=400)
        return await wav_stream(text, _clean_voice(voice))

    @app.post("/synthesize")
    async def synthesize_stream(request: Request):
        data = await read_payload(request)
        text = _clean_text(data.get("text"))
        if text is None:
            return JSONResponse({"error": NO_TEXT}, status_code=400)
        return await wav_stream(text, _clean_voice(data.get("voice")))

    @app.get("/api/audio/{filename}")
    def get_audio(filename: str):
        try:
            path = store.resolve(filename)
        except FileNotFoundError:
            return JSONResponse({"error": "File not found"}, status_code=404)
        return FileResponse(path, media_type="audio/wav")

    # Simple page for the proxy deployment
    @app.get("/demo")
    def demo():
        if settings.web_dir is None or not (settings.web_dir / "index.html").is_file():
            return JSONResponse({"error": "No web interface configured"}, status_code=404)
        html_path = settings.web_dir / "index.html"
        return HTMLResponse(html_path.read_text(encoding="utf-8"))

    logger.info("TTS API ready with %s engine, audio in %s", engine.name, store.directory)
    return app
