from fastapi import APIRouter
from app.routers import auth, resume

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(auth.router, tags=["Authentication"])
api_router.include_router(resume.router, tags=["Resumes"])
