import sys
from fastapi import FastAPI
from contextlib import asynccontextmanager
from database.postgres import init_postgres, close_postgres
import uvicorn
from loguru import logger
from api.v1.endpoints.appointment import router as appointment_router
from api.v1.endpoints.scheduling import router as scheduling_router
from fastapi.middleware.cors import CORSMiddleware
from core.config import FRONTEND_URL, LOG_LEVEL
from core.middleware import RequestLoggingMiddleware
from fastapi.openapi.utils import get_openapi

origins = [
    "http://127.0.0.1:3000",
    FRONTEND_URL
]

logger.remove()
logger.add(sys.stderr, level=LOG_LEVEL)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title="Practice Scheduling API",
        version="1.0",
        description="Provider availability and patient appointment booking",
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        }
    }

    openapi_schema["security"] = [
        {"BearerAuth": []}
    ]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_postgres()
    yield
    await close_postgres()


app: FastAPI = FastAPI(lifespan=lifespan, title="Practice Scheduling")
app.include_router(appointment_router)
app.include_router(scheduling_router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in origins if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.openapi=custom_openapi

@app.get('/health')
def health():
    return {"status": "ok"}

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
