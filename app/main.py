from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.api.v1.router import v1_router
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # Middleware: Request ID + access log
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    # Stored contingency invoices, at the URLs InvoiceStorage hands out
    if settings.invoice_public_base_url.startswith("/"):
        app.mount(
            settings.invoice_public_base_url,
            StaticFiles(directory=settings.invoice_upload_dir, check_dir=False),
            name="invoices",
        )

    return app


app = create_app()
