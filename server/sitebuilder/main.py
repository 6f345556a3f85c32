import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitebuilder.api.generate import close_agent, router as generate_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_agent()


app = FastAPI(title="Sitebuilder AI Backend", lifespan=lifespan)
app.include_router(generate_router, prefix="/generate")


@app.get("/health")
async def health():
    return {"status": "ok"}
