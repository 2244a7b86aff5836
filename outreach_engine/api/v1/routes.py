"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from outreach_engine.api.v1.endpoints import (
    agent_tasks,
    campaigns,
    leads,
)

api_router = APIRouter()

# Task invocation and manual tasks
api_router.include_router(agent_tasks.router)

# Staff controls
api_router.include_router(leads.router)
api_router.include_router(campaigns.router)
