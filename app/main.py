from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.logging import configure_logging
from app.api.v1.auth.router import router as auth_router
from app.api.v1.catalog.router import router as catalog_router
from app.api.v1.availability.router import router as availability_router
from app.api.v1.student_packages.router import router as student_packages_router
from app.api.v1.bookings.router import router as bookings_router
from app.api.v1.class_history.router import router as class_history_router


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Music Lesson Booking Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(availability_router)
    app.include_router(student_packages_router)
    app.include_router(bookings_router)
    app.include_router(class_history_router)

    return app


app = create_app()
