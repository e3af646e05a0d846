from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.apps.api.deps import get_db
from slotshare.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slotshare.apps.api.response import SuccessEnvelope, success_response
from slotshare.apps.api.schemas import CountryOut, ServiceProviderOut, country_out, service_provider_out
from slotshare.persistence.repos import catalog as catalog_repo


router = APIRouter(tags=["catalog"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/service-providers", response_model=SuccessEnvelope[list[ServiceProviderOut]])
async def list_service_providers(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    providers = await catalog_repo.list_service_providers(db)
    data = [
        service_provider_out(provider, await catalog_repo.list_supported_countries(db, provider.id))
        for provider in providers
    ]
    return success_response(request=request, data=data)


@router.get("/countries", response_model=SuccessEnvelope[list[CountryOut]])
async def list_countries(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    countries = await catalog_repo.list_countries(db)
    return success_response(request=request, data=[country_out(country) for country in countries])
