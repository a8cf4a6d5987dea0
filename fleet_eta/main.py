from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from fleet_eta.core.config import settings
from fleet_eta.core.logger import logger, log_error
from fleet_eta.api.routes_tracking import router as tracking_router
from fleet_eta.services.tracker import fleet_tracker

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Live fleet ETA tracking with smoothed position, speed and ETA",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Note: When allow_credentials=True, allow_origins cannot be ["*"]
if settings.cors_origins_list == ["*"]:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# Global exception handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with proper logging"""
    logger.warning(
        f"HTTP {exc.status_code}: {request.method} {request.url.path} - {exc.detail}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with user-friendly messages"""
    errors = exc.errors()
    logger.warning(f"Validation error: {request.method} {request.url.path} - {errors}")

    formatted_errors = []
    for error in errors:
        field = " -> ".join(str(x) for x in error["loc"])
        formatted_errors.append(f"{field}: {error['msg']}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request data",
            "errors": formatted_errors
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler for unexpected errors"""
    log_error(f"{request.method} {request.url.path}", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An unexpected error occurred. Please try again later.",
            "type": type(exc).__name__ if settings.DEBUG else None
        }
    )


# Include routers
app.include_router(tracking_router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """Start the fleet tracker"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Destination: ({settings.DESTINATION_LAT}, {settings.DESTINATION_LON})")
    logger.info(f"Fix source: {'dummy GPS' if settings.USE_DUMMY_GPS else settings.DEVICE_API_URL}")
    logger.info(f"Routing provider: {settings.ROUTING_PROVIDER}")
    logger.info("=" * 60)

    if settings.AUTO_START_TRACKING:
        await fleet_tracker.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the fleet tracker"""
    await fleet_tracker.stop()
    logger.info("=" * 60)
    logger.info(f"Shutting down {settings.APP_NAME}")
    logger.info("=" * 60)


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "online",
        "endpoints": {
            "tracking": "/api/tracking",
            "notifications": "/api/register-notification",
            "websocket": "/api/ws/tracking",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "tracking": fleet_tracker.is_running}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fleet_eta.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
