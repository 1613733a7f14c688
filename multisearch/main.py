from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from multisearch.api.routes import router as api_router
from multisearch.config import Settings
from multisearch.observability.logger import get_logger, setup_logging
from multisearch.service import MultiSearch

settings = Settings()
setup_logging(settings.log_level, json_logs=settings.log_json)
log = get_logger("main")

# Shared application state, read by the API routes
app_state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("multisearch_starting", config_path=settings.config_path)

    service = MultiSearch.from_settings(settings)
    await service.startup()
    app_state["service"] = service

    yield

    log.info("multisearch_stopping")
    await service.shutdown()
    app_state.clear()


app = FastAPI(title="multisearch", version="0.1.0", lifespan=lifespan)
app.include_router(api_router)


def run():
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
