"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dashcore.api.routers import cards
from dashcore.core.errors import CardQueryError, ExecutionError
from dashcore.core.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Dashboard Card Core",
    version="0.1.0",
    description="Guarded parameterised card queries with pivot and drill-down",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cards.router, prefix="/cards", tags=["Cards"])


@app.exception_handler(CardQueryError)
async def card_query_error_handler(request: Request, exc: CardQueryError) -> JSONResponse:
    if isinstance(exc, ExecutionError):
        # driver detail stays in the server log
        logger.error("Card %s execution failed: %s", exc.card_id, exc.message)
        body = {"error": "Failed to execute query", "kind": exc.kind}
    else:
        logger.info("Card %s request rejected (%s): %s", exc.card_id, exc.kind, exc.message)
        body = exc.to_dict()
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from dashcore.core.config import get_settings

    settings = get_settings()
    uvicorn.run(app, host="0.0.0.0", port=settings.api_port, log_level=settings.log_level.lower())
