# link-analytics-service/main.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from analytics_router import router as analytics_router
from auth import broadcasting_router
from auth import router as auth_router
from config import get_settings
from database import close_mongo_connection, connect_to_mongo
from exceptions import AuthenticationError, LinkExpiredError, LinkNotFoundError, ServiceError
from fastapi import BackgroundTasks, FastAPI, HTTPException, Path, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from links_router import router as links_router
from logging_config import initialize_logging
from recorder import record_redirect
from resolver import SLUG_PATTERN, resolve_link
from starlette.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    initialize_logging()
    # Connect to MongoDB
    mongo_client, _ = await connect_to_mongo()
    # Redis connections are handled by dependency injection per request
    yield
    await close_mongo_connection(mongo_client)


app = FastAPI(
    title="Link Analytics Service",
    description="Short links with click tracking and analytics.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={
            "user_id": getattr(request.state, "user_id", None),
            "operation": f"{request.method} {request.url.path}",
            "error": str(exc),
        },
    )
    content = {"status": "error", "message": "Internal Server Error"}
    if get_settings().debug:
        content["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


app.include_router(auth_router)
app.include_router(broadcasting_router)
app.include_router(links_router)
app.include_router(analytics_router)


@app.get("/health", tags=["Health Check"])
async def health_check():
    """
    Health check endpoint to verify service status.
    """
    return {"status": "ok", "message": "Link Analytics Service is running!"}


# Registered last so it never shadows the API routes above.
@app.get("/{slug}", tags=["Redirect"])
async def redirect_to_target(
    request: Request,
    background_tasks: BackgroundTasks,
    slug: str = Path(..., pattern=SLUG_PATTERN),
):
    """
    Redirects to the link target and records the hit.
    """
    try:
        link = await resolve_link(slug)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    except LinkExpiredError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=exc.message)

    await record_redirect(link, request, background_tasks)
    return RedirectResponse(url=link.target, status_code=status.HTTP_302_FOUND, background=background_tasks)


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
