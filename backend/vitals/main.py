import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vitals.config import settings
from vitals.db.connection import init_db, close_db
from vitals.routers import issues, rate_limit, repos, settings as settings_router
from vitals.services.github_client import fetch_client
from vitals.services.sync_service import orchestrator, recover_interrupted

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await recover_interrupted()
    yield
    await orchestrator.shutdown()
    await close_db()
    await fetch_client.close()


app = FastAPI(title="Repo Vitals", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(repos.router, prefix="/api")
app.include_router(issues.router, prefix="/api")
app.include_router(settings_router.router, prefix="/api")
app.include_router(rate_limit.router, prefix="/api")
