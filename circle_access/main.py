import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from circle_access.api.subscriptions import router as subscriptions_router
from circle_access.api.stream import router as stream_router
from circle_access.api.health import router as health_router
from circle_access.api.supporter import router as supporter_router
from circle_access.scheduler import start_scheduler, stop_scheduler

log = logging.getLogger("circle_access")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

origins = [
    "https://merocircle.app",
    "https://www.merocircle.app",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(subscriptions_router)
app.include_router(stream_router)
app.include_router(supporter_router)
