"""Vault endpoints: balances, payout ledger and the emergency hatch."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.database import get_session
from rundao.db.models import User
from rundao.escrow.schemas import (
    EmergencyWithdrawRequest,
    TransferEnvelope,
    TransferListResponse,
    TransferResponse,
    VaultBalanceListResponse,
    VaultBalanceResponse,
)
from rundao.escrow.vault import emergency_withdraw, list_transfers, list_vault_balances

router = APIRouter(prefix="/api/vault", tags=["Vault"])


@router.get("/balances", response_model=VaultBalanceListResponse)
async def list_balances_endpoint(db: AsyncSession = Depends(get_session)) -> VaultBalanceListResponse:
    """Per-token custodied, locked and available amounts."""
    balances = await list_vault_balances(db)
    return VaultBalanceListResponse(
        balances=[
            VaultBalanceResponse(
                token=b.token,
                custodied=b.custodied,
                locked=b.locked,
                available=b.custodied - b.locked,
            )
            for b in balances
        ],
        count=len(balances),
    )


@router.get("/transfers", response_model=TransferListResponse)
async def list_transfers_endpoint(
    quest_id: int | None = Query(None),
    db: AsyncSession = Depends(get_session),
) -> TransferListResponse:
    transfers = await list_transfers(db, quest_id)
    return TransferListResponse(
        transfers=[TransferResponse.model_validate(t) for t in transfers],
        count=len(transfers),
    )


@router.post("/emergency-withdraw", response_model=TransferEnvelope)
async def emergency_withdraw_endpoint(
    body: EmergencyWithdrawRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TransferEnvelope:
    """Move unlocked vault balance out (administrators)."""
    transfer = await emergency_withdraw(db, user, body.token.upper(), body.amount, body.to_address)
    await db.commit()
    return TransferEnvelope(transfer=TransferResponse.model_validate(transfer))
