from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.domain.models import Country, Currency, ServiceProvider, ServiceProviderCountry


async def get_service_provider(session: AsyncSession, service_provider_id: str) -> ServiceProvider | None:
    result = await session.execute(
        select(ServiceProvider).where(ServiceProvider.id == service_provider_id)
    )
    return result.scalar_one_or_none()


async def list_service_providers(session: AsyncSession, *, active_only: bool = True) -> list[ServiceProvider]:
    stmt = select(ServiceProvider)
    if active_only:
        stmt = stmt.where(ServiceProvider.is_active.is_(True))
    result = await session.execute(stmt.order_by(ServiceProvider.name, ServiceProvider.id))
    return list(result.scalars().all())


async def get_country(session: AsyncSession, country_id: str) -> Country | None:
    result = await session.execute(select(Country).where(Country.id == country_id))
    return result.scalar_one_or_none()


async def list_countries(session: AsyncSession, *, active_only: bool = True) -> list[Country]:
    stmt = select(Country)
    if active_only:
        stmt = stmt.where(Country.is_active.is_(True))
    result = await session.execute(stmt.order_by(Country.name, Country.id))
    return list(result.scalars().all())


async def get_currency(session: AsyncSession, currency_id: str) -> Currency | None:
    result = await session.execute(select(Currency).where(Currency.id == currency_id))
    return result.scalar_one_or_none()


async def provider_supports_country(
    session: AsyncSession, service_provider_id: str, country_id: str
) -> bool:
    result = await session.execute(
        select(ServiceProviderCountry.id)
        .where(
            ServiceProviderCountry.service_provider_id == service_provider_id,
            ServiceProviderCountry.country_id == country_id,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_supported_countries(session: AsyncSession, service_provider_id: str) -> list[Country]:
    result = await session.execute(
        select(Country)
        .join(ServiceProviderCountry, ServiceProviderCountry.country_id == Country.id)
        .where(ServiceProviderCountry.service_provider_id == service_provider_id)
        .order_by(Country.name, Country.id)
    )
    return list(result.scalars().all())
