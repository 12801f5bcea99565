from fastapi import APIRouter

from staffsync.api.companies import companies_router
from staffsync.api.users import users_router
from staffsync.models.enums import ServiceRole


def build_api_router(role: ServiceRole | str) -> APIRouter:
    """Router for the half of the domain this process serves."""
    api_router = APIRouter()
    if ServiceRole(role) == ServiceRole.COMPANY:
        api_router.include_router(companies_router)
    else:
        api_router.include_router(users_router)
    return api_router
