from __future__ import annotations

import asyncio
from dataclasses import dataclass
import sys

from slotshare.core.config import get_settings
from slotshare.domain.models import Country, Currency, ServiceProvider, ServiceProviderCountry
from slotshare.persistence.db import Database


@dataclass(frozen=True)
class CountrySeed:
    id: str
    name: str
    code: str
    alpha3: str
    currency_id: str


@dataclass(frozen=True)
class ProviderSeed:
    id: str
    name: str
    description: str
    country_ids: tuple[str, ...]


CURRENCIES = (
    Currency(id="cur_usd", name="US Dollar", code="USD", symbol="$", minor_unit=2),
    Currency(id="cur_eur", name="Euro", code="EUR", symbol="€", minor_unit=2),
    Currency(id="cur_ngn", name="Nigerian Naira", code="NGN", symbol="₦", minor_unit=2),
)

COUNTRIES = (
    CountrySeed(id="ctry_us", name="United States", code="US", alpha3="USA", currency_id="cur_usd"),
    CountrySeed(id="ctry_de", name="Germany", code="DE", alpha3="DEU", currency_id="cur_eur"),
    CountrySeed(id="ctry_ng", name="Nigeria", code="NG", alpha3="NGA", currency_id="cur_ngn"),
)

PROVIDERS = (
    ProviderSeed(
        id="sp_netflix",
        name="Netflix",
        description="Video streaming",
        country_ids=("ctry_us", "ctry_de", "ctry_ng"),
    ),
    ProviderSeed(
        id="sp_spotify",
        name="Spotify",
        description="Music streaming",
        country_ids=("ctry_us", "ctry_de"),
    ),
)


async def _seed() -> int:
    # Idempotent: rows are merged by primary key so reruns converge.
    database = Database(settings=get_settings())
    try:
        async with database.transaction() as session:
            for currency in CURRENCIES:
                await session.merge(currency)
            for country in COUNTRIES:
                await session.merge(
                    Country(
                        id=country.id,
                        name=country.name,
                        code=country.code,
                        alpha3=country.alpha3,
                        currency_id=country.currency_id,
                    )
                )
            for provider in PROVIDERS:
                await session.merge(
                    ServiceProvider(id=provider.id, name=provider.name, description=provider.description)
                )
                for country_id in provider.country_ids:
                    await session.merge(
                        ServiceProviderCountry(
                            id=f"{provider.id}:{country_id}",
                            service_provider_id=provider.id,
                            country_id=country_id,
                        )
                    )
    finally:
        await database.dispose()
    print(f"Seeded {len(CURRENCIES)} currencies, {len(COUNTRIES)} countries, {len(PROVIDERS)} providers")
    return 0


def main() -> int:
    try:
        return asyncio.run(_seed())
    except Exception as exc:  # noqa: BLE001 - seeding failures should exit non-zero with context
        print(f"seed_catalog failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
