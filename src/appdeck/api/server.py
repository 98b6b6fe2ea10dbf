from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from appdeck.api.routers import apps, jobs
from appdeck.version import __version__

app = FastAPI(
    title="appdeck API",
    description="Deploy and manage self-hosted compose apps.",
    version=__version__,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],  # Frontend origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(apps.router)
app.include_router(jobs.router)
