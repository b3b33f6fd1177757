import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import get_api_router
from app.core.config import get_settings
from app.middleware.request_context import RequestContextMiddleware, RequestIdLogFilter
from app.services.background_tasks import get_background_task_runner


logger = logging.getLogger(__name__)
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIdLogFilter())
logging.getLogger("app").setLevel(settings.log_level)

# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("hpack").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """종료 시 남아 있는 대화 저장 작업을 마무리"""
    yield

    runner = get_background_task_runner()
    if runner.pending:
        logger.info("Draining %d background task(s)", runner.pending)
    await runner.drain(timeout=10.0)


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",   # Next.js 프론트엔드
        "http://localhost:5173",
    ],
    allow_origin_regex="https?://.*",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.include_router(get_api_router())


@app.get("/")
def root() -> dict:
    return {"message": "Dibs CRM assistant backend", "api_prefix": settings.api_prefix}
