from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from tutordesk.config import settings
from tutordesk.db import Base, engine
from tutordesk.metrics import flush_metrics
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.routers import availability, scheduling
from tutordesk.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger('tutordesk.request')


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    if settings.enable_scheduler:
        start_scheduler()
    yield
    stop_scheduler()
    flush_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logger.warning('slow_request method=%s path=%s status=%s duration_ms=%.2f', request.method, request.url.path, response.status_code, duration_ms)
    return response


app.include_router(scheduling.router)
app.include_router(availability.router)


@app.get('/health')
def health():
    return {'status': 'ok', 'app': settings.app_name}
