"""
Process Workflow API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import ProcessFlowError, ValidationError
from ..config import get_config
from ..logging_config import get_logger, setup_logging
from .auth import ProcessSystem, create_access_token, get_caller, get_process_system
from .instances import router as instances_router
from .step_instances import router as step_instances_router
from .templates import router as templates_router


logger = get_logger("api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Process Workflow API",
        description="Multi-step business processes with dynamic step forms",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProcessFlowError)
    async def process_flow_error_handler(request: Request, exc: ProcessFlowError):
        content = {"detail": exc.message}
        if isinstance(exc, ValidationError):
            content["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            errors.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
        return JSONResponse(status_code=400, content={"detail": "Requisição inválida", "errors": errors})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Include routers
    app.include_router(templates_router, prefix="/process-templates", tags=["Process Templates"])
    app.include_router(instances_router, prefix="/process-instances", tags=["Process Instances"])
    app.include_router(step_instances_router, prefix="/process-step-instances", tags=["Step Instances"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "processflow_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Process Workflow API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "process-templates": "/process-templates",
                "process-instances": "/process-instances",
                "process-step-instances": "/process-step-instances"
            }
        }

    return app


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "process_flow.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


# Create the app instance for uvicorn
app = create_app()

__all__ = ["create_app", "run_server", "ProcessSystem", "get_process_system", "get_caller", "create_access_token"]
