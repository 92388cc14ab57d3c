# tenantguard/api/v1/contracts.py
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.api.deps.context import get_request_context, require_tenant_id
from tenantguard.auth.guard import Authorizer, RequestContext
from tenantguard.auth.permissions import PERM
from tenantguard.db.session import get_db
from tenantguard.models.contract import Contract
from tenantguard.schemas.contract import ContractCreate, ContractOut


def build_router(authorizer: Authorizer) -> APIRouter:
    router = APIRouter(prefix="/contracts", tags=["contracts"])

    @router.get("", response_model=List[ContractOut])
    @authorizer.guard([PERM.CONTRACTS_READ_OWN, PERM.CONTRACTS_READ_COMPANY])
    async def list_contracts(
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        """
        Company-wide readers see every contract of the tenant; everyone else
        only the ones they created.
        """
        tenant_id = require_tenant_id(ctx)

        stmt = select(Contract).where(Contract.tenant_id == tenant_id)
        if not ctx.authorization.allows(PERM.CONTRACTS_READ_COMPANY):
            stmt = stmt.where(Contract.created_by_id == ctx.principal_id)

        res = await db.execute(stmt.order_by(Contract.created_at.desc()))
        return list(res.scalars().all())

    @router.post("", response_model=ContractOut, status_code=status.HTTP_201_CREATED)
    @authorizer.guard(PERM.CONTRACTS_CREATE_OWN)
    async def create_contract(
        payload: ContractCreate,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        contract = Contract(
            tenant_id=require_tenant_id(ctx),
            created_by_id=ctx.principal_id,
            title=payload.title.strip(),
            status="draft",
        )
        db.add(contract)
        await db.commit()
        await db.refresh(contract)
        return contract

    @router.post("/{contract_id}/approve", response_model=ContractOut)
    @authorizer.guard(PERM.CONTRACTS_APPROVE_COMPANY)
    async def approve_contract(
        contract_id: uuid.UUID,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        stmt = select(Contract).where(
            Contract.id == contract_id,
            Contract.tenant_id == require_tenant_id(ctx),
        )
        contract = (await db.execute(stmt)).scalar_one_or_none()
        if contract is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")

        if contract.status == "approved":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Contract already approved")

        contract.status = "approved"
        await db.commit()
        await db.refresh(contract)
        return contract

    return router
