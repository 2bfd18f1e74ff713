from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from academy.config import settings
from academy.core.errors import install_error_handlers
from academy.db import Base, SessionLocal, engine
from academy.route_logging import EndpointNameRoute
from academy.routers import assignments, attendance, auth, batches, materials, payments, users
from academy.services.bootstrap_service import run_bootstrap
from academy.services.file_storage import ensure_upload_dirs

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    ensure_upload_dirs()
    db = SessionLocal()
    try:
        run_bootstrap(db)
    finally:
        db.close()
    yield


app = FastAPI(title=settings.app_name, version='1.0.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
install_error_handlers(app)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('academy.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(batches.router)
app.include_router(attendance.router)
app.include_router(assignments.router)
app.include_router(materials.router)
app.include_router(payments.router)


@app.get('/')
def root():
    return {'success': True, 'message': f'{settings.app_name} API is running'}


@app.get('/health')
def health():
    return {'status': 'ok', 'env': settings.app_env}
