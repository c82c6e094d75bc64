import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from repair_booking.api import admin_routes, routes
from repair_booking.config import configure_logging, settings
from repair_booking.database import init_db
from repair_booking.errors import BookingError
from repair_booking.services.scheduler import start_scheduler, stop_scheduler

configure_logging(settings)
logger = logging.getLogger(__name__)

# Initialize database
init_db()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(admin_routes.router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Render expected failures as {"ok": false, "error", "message"}"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Start background scheduler on app startup"""
    if settings.enable_scheduler:
        start_scheduler()
    logger.info("%s started", settings.app_name)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background scheduler on app shutdown"""
    stop_scheduler()
    logger.info("%s stopped", settings.app_name)


@app.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
