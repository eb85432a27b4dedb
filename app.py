from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from constants import CORS_ORIGINS, HUB_PATH
from hub import chat_hub
from logging_config import get_logger
from routers.hub import hub_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Presence lives only as long as the process
    chat_hub.reset()
    logger.info(f"Chat hub ready at {HUB_PATH}")
    yield
    chat_hub.reset()
    logger.info("Chat hub stopped")


app = FastAPI(title="RoomChat", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(hub_router)

logger.info("FastAPI application initialized")
