import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .account_api import router as account_router
from .community_api import router as community_router
from .config import Settings
from .records_api import router as records_router
from .schedule_api import router as schedule_router
from .statistics_api import router as statistics_router
from .students_api import router as students_router

settings = Settings.from_env()

app = FastAPI(title="Wee Class Counseling API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(account_router)
app.include_router(students_router)
app.include_router(records_router)
app.include_router(schedule_router)
app.include_router(community_router)
app.include_router(statistics_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run("counseling.server.main:app", host="0.0.0.0", port=8000, reload=True)
