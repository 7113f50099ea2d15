from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meeting_tasks.api.routes.transcripts import router as transcripts_router
from meeting_tasks.config import settings
from meeting_tasks.pipeline import open_pipeline
from meeting_tasks.telemetry import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Built once so model clients and the identity cache outlive single requests.
    configure_logging(settings.log_level, json_output=settings.log_json)
    async with open_pipeline(settings) as pipeline:
        app.state.pipeline = pipeline
        yield


app = FastAPI(
    title="Meeting Tasks API",
    description="Turn meeting transcripts into tracked work items",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(transcripts_router)
