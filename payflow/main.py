"""Main FastAPI application entry point for the authoritative store."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payflow.config import load_settings
from payflow.database import engine, Base
from payflow.api.routes import router
from payflow.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from payflow.models.domain import PaymentRequest, Project, Vendor  # noqa: F401
from payflow.models.audit import AuditLog  # noqa: F401


def create_app(bind=engine) -> FastAPI:
    """Build the store application, creating tables on ``bind``."""
    Base.metadata.create_all(bind=bind)

    app = FastAPI(
        title="Payflow - Payment Compliance Store",
        description="Authoritative store for payment requests, projects, vendors and the audit trail.",
        version="0.1.0"
    )

    # Sessions run in browsers on other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api", tags=["Payflow"])

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "Payflow Store"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    configure_logging(load_settings())
    uvicorn.run(app, host="0.0.0.0", port=8080)
