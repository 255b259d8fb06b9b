# Copyright (c) 2025 The chatsync Authors
# SPDX-License-Identifier: MIT

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatsync.config.loader import get_str_env
from chatsync.server.dependencies import initialise_chat_session, set_chat_session
from chatsync.server.router import router as conversation_router
from chatsync.store.errors import StoreError

load_dotenv()

logging.basicConfig(
    level=get_str_env("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    session = initialise_chat_session()
    for store in (session.primary, session.secondary):
        try:
            await store.init()
        except StoreError as exc:
            logger.warning("Could not initialise %s store: %s", store.name, exc)
    set_chat_session(session)
    await session.activate()
    try:
        yield
    finally:
        await session.close()
        await session.primary.close()
        await session.secondary.close()


app = FastAPI(
    title="chatsync API",
    description="Branching conversation history kept in sync across a hosted and a local store",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins_str = get_str_env("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",")]

logger.info(f"Allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(conversation_router)
