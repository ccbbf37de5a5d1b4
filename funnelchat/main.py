from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from funnelchat.config import settings
from funnelchat.logging_config import setup_logging
from funnelchat.routers import conversations

setup_logging(settings.log_level, settings.log_format)

app = FastAPI(
    title="Funnel Chat API",
    description="Funnel conversation engine",
    version="0.1.0",
    debug=settings.debug,
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
