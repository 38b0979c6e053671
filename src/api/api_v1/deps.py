from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from core.db import engine
from services.vault_accounting import VaultAccountingService


def get_db() -> Generator:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]


def get_accounting_service(session: SessionDep) -> VaultAccountingService:
    return VaultAccountingService(session)


AccountingServiceDep = Annotated[VaultAccountingService, Depends(get_accounting_service)]
