from fastapi import APIRouter

from app.api.routes import blogs, companies, health, jobs, subscriptions

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
api_router.include_router(blogs.router, prefix="/api/blogs", tags=["blogs"])
api_router.include_router(companies.router, prefix="/api/companies", tags=["companies"])
api_router.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["subscriptions"])
