"""
seed_demo.py
------------
Seed a demo company with the payment-type cascading directories and print
a bearer token for it.

Usage:
    python create_tables.py
    python seed_demo.py [company name]
"""

import asyncio
import sys

from erp_directory.core.logging import configure_logging, get_logger
from erp_directory.core.security import create_access_token
from erp_directory.db.seed import seed_cascading_demo
from erp_directory.db.session import AsyncSessionLocal, engine
from erp_directory.services.company_service import CompanyService

logger = get_logger(__name__)


async def main(company_name: str) -> None:
    async with AsyncSessionLocal() as db:
        company = await CompanyService.get_company_by_name(db, company_name)
        if company is None:
            company = await CompanyService.create_company(db, company_name)
        demo = await seed_cascading_demo(db, company.id)
        await db.commit()

    token = create_access_token(subject="seed", company_id=company.id)
    logger.info(
        "Demo ready",
        company_id=company.id,
        payments_directory=demo.directories["Payments"] if demo else None,
        token=token,
    )
    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "Acme"))
