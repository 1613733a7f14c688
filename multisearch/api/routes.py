from fastapi import APIRouter, HTTPException

from multisearch.api.schemas import HealthEntry, SearchRequest
from multisearch.credits.models import CreditSnapshot
from multisearch.errors import UnknownBackend
from multisearch.observability.logger import get_logger
from multisearch.strategy.base import StrategyResult

log = get_logger("api")

router = APIRouter(prefix="/api")


def get_app_state():
    """Get shared app state (filled in by the lifespan handler)."""
    from multisearch.main import app_state

    return app_state


@router.post("/search", response_model=StrategyResult)
async def search(req: SearchRequest):
    service = get_app_state()["service"]
    try:
        return await service.search(
            req.query,
            backend_ids=req.engines,
            strategy=req.strategy,
            limit=req.limit,
            include_raw=req.include_raw,
        )
    except UnknownBackend as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        # Unknown strategy name or blank query
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/credits", response_model=list[CreditSnapshot])
async def get_credits():
    return get_app_state()["service"].credit_status()


@router.get("/health", response_model=list[HealthEntry])
async def get_health():
    return await get_app_state()["service"].health()


@router.get("/backends")
async def list_backends():
    service = get_app_state()["service"]
    validation = await service.validate_backends()
    return [
        {
            **backend.metadata().model_dump(),
            "type": backend.config.type,
            "validation": validation[backend.id].model_dump() if backend.id in validation else None,
        }
        for backend in service.registry.backends()
    ]


@router.get("/strategies")
async def list_strategies():
    return {"strategies": get_app_state()["service"].strategies.available()}
