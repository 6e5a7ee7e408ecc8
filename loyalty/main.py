# loyalty/main.py
# FastAPI entry point: logging, CORS, domain error handler, routers, media.

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("loyalty")

from loyalty.errors import LoyaltyError
from loyalty.routers.auth import router as auth_router
from loyalty.routers.users import router as users_router
from loyalty.routers.transactions import router as transactions_router
from loyalty.routers.promotions import router as promotions_router
from loyalty.routers.events import router as events_router
from loyalty.utils.media import media_root

app = FastAPI(
    title="Loyalty Backend",
    description="Points ledger for campus purchases, transfers, redemptions, promotions and events.",
)

_DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:5173"
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", _DEFAULT_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LoyaltyError)
async def loyalty_error_handler(request: Request, exc: LoyaltyError):
    log.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth_router,         prefix="/auth",         tags=["Auth"])
app.include_router(users_router,        prefix="/users",        tags=["Users"])
app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
app.include_router(promotions_router,   prefix="/promotions",   tags=["Promotions"])
app.include_router(events_router,       prefix="/events",       tags=["Events"])

app.mount("/media", StaticFiles(directory=media_root()), name="media")


@app.get("/")
def root():
    """Healthcheck."""
    return {"message": "loyalty backend is running", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("loyalty.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=False)
