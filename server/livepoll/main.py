import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .broadcast import BroadcastHub
from .config import (
    LOG_FORMAT,
    LOG_LEVEL,
    PORT,
    TRUST_PROXY_HEADERS,
)
from .errors import PollNotFound, RateLimited, VoteError
from .guard import AbuseGuard, build_guard
from .models import PollCreate, PollView, VoteIn
from .realtime import router as realtime_router
from .state import InMemoryPollStore, PollStore
from .voting import VoteProcessor

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def setup_logging(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT) -> None:
    level = level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        print(f"Warning: Invalid log level '{level}', defaulting to INFO")
        level = "INFO"
    logging.basicConfig(level=getattr(logging, level), format=fmt)


def client_identity(request: Request, trust_proxy: bool = TRUST_PROXY_HEADERS) -> str:
    """
    Best-effort voter identity: the caller's address, as reported by a proxy if
    we trust one. Trivially spoofable when proxy headers are trusted.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded and forwarded.split(",")[0].strip():
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


def create_app(
    store: Optional[PollStore] = None,
    guard: Optional[AbuseGuard] = None,
    hub: Optional[BroadcastHub] = None,
    trust_proxy: bool = TRUST_PROXY_HEADERS,
) -> FastAPI:
    store = store or InMemoryPollStore()
    guard = guard or build_guard()
    hub = hub or BroadcastHub()
    processor = VoteProcessor(store, guard, hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: logging + abuse sweep in background
        setup_logging()
        guard.start()
        logger.info("Real-Time Poll API ready (abuse mode: %s)", guard.mode)
        yield
        await guard.stop()

    app = FastAPI(title="Real-Time Poll API", version=VERSION, lifespan=lifespan)
    app.state.store = store
    app.state.guard = guard
    app.state.hub = hub
    app.state.processor = processor

    app.include_router(realtime_router)

    @app.exception_handler(VoteError)
    async def vote_error_handler(request: Request, exc: VoteError):
        body = {"error": exc.message}
        headers = None
        if isinstance(exc, RateLimited):
            body["retryAfter"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [err.get("msg", "Invalid request") for err in exc.errors()]
        return JSONResponse(status_code=400, content={"error": "; ".join(messages)})

    @app.get("/")
    def root():
        return {
            "success": True,
            "message": "Real-Time Poll API is running",
            "version": VERSION,
            "endpoints": {
                "createPoll": "POST /api/polls",
                "getPoll": "GET /api/polls/:pollId",
                "vote": "POST /api/polls/:pollId/vote",
                "realtime": "WS /ws",
            },
        }

    @app.get("/api/health")
    def health():
        return {"status": "ok", "message": "Server is running"}

    @app.post("/api/polls", status_code=201)
    async def create_poll(body: PollCreate):
        poll = await store.create(body.question, body.options)
        logger.info("Poll created: %s (%s options)", poll.poll_id, len(poll.options))
        return {"success": True, "pollId": poll.poll_id, "message": "Poll created successfully"}

    @app.get("/api/polls/{poll_id}")
    async def get_poll(poll_id: str, request: Request):
        poll = await store.get(poll_id)
        if poll is None:
            raise PollNotFound(poll_id)

        view = PollView(
            poll_id=poll.poll_id,
            question=poll.question,
            options=poll.options,
            total_votes=poll.total_votes,
            has_voted=processor.has_voted(poll_id, client_identity(request, trust_proxy)),
        )
        return JSONResponse(
            content={"success": True, "poll": view.wire()},
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/api/polls/{poll_id}/vote")
    async def vote(poll_id: str, body: VoteIn, request: Request):
        identity = client_identity(request, trust_proxy)
        tally = await processor.vote(poll_id, body.option_index, identity)
        return {"success": True, "message": "Vote recorded successfully", "poll": tally.wire()}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("livepoll.main:app", host="0.0.0.0", port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
