import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi

from app.api import location_tracking
from app.config import settings
from app.database import engine, Base
from app.middleware.logging import setup_logging, add_logging_middleware
from app.services.location_tracking import LocationMonitor
from app.services.sweep import SweepScheduler
from app.services.timers import SessionTimerManager

# Initialize FastAPI app
app = FastAPI(
    title="Event Attendance Geofence Monitor",
    description="Geofence monitoring of checked-in event participants, with automatic absence after too long outside",
    version="1.0.0",
    docs_url=None,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
add_logging_middleware(app)

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Custom exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )

@app.on_event("startup")
async def startup():
    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created or verified")

    timers = SessionTimerManager(settings.TICK_INTERVAL_SECONDS)
    app.state.monitor = LocationMonitor(timers=timers)
    app.state.sweep = SweepScheduler(app.state.monitor, settings.SWEEP_INTERVAL_SECONDS)
    if settings.ENABLE_BACKGROUND_SWEEP:
        app.state.sweep.start()

@app.on_event("shutdown")
async def shutdown():
    await app.state.sweep.stop()
    await app.state.monitor.timers.shutdown()

# Include routers
app.include_router(location_tracking.router, prefix="/api", tags=["Location Tracking"])

# Custom OpenAPI schema for documentation
@app.get("/api/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/api/openapi.json",
        title="Geofence Monitor API Documentation",
        swagger_ui_parameters={"defaultModelsExpandDepth": -1},
    )

@app.get("/api/openapi.json", include_in_schema=False)
async def get_openapi_endpoint():
    return get_openapi(
        title="Event Attendance Geofence Monitor",
        version="1.0.0",
        description="API for geofence attendance monitoring",
        routes=app.routes,
    )

@app.get("/", tags=["Root"])
async def root():
    return {"message": "Geofence attendance monitor. Visit /api/docs for documentation."}

# Run the server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=5000, reload=True)
