"""API endpoints for cashback programs, balances, redemption and sale reversal."""

from __future__ import annotations

from decimal import Decimal
from typing import List, NoReturn
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.api.dependencies.security import require_internal_api_key
from cashback_api.db.session import get_session
from cashback_api.models.cashback import CashbackTransaction, CashbackTransactionType
from cashback_api.schemas.cashback import (
    CashbackBalanceResponse,
    CashbackProgramInput,
    CashbackProgramResponse,
    CashbackTransactionResponse,
    RedemptionData,
    RedemptionRequest,
    RedemptionResponse,
    ReversalResponse,
    SaleCancellationRequest,
)
from cashback_api.services.cashback import (
    REDEMPTION_SUCCESS_MESSAGE,
    CashbackError,
    CashbackNotFoundError,
    CashbackProgramService,
    get_balance,
    max_redeemable_amount,
    reconcile_balance,
    redeem,
)
from cashback_api.services.sales import SaleLifecycleService


router = APIRouter(prefix="/cashback", tags=["cashback"])

INTERNAL_ERROR_MESSAGE = "Erro interno ao processar a operação de cashback."


class ProgramEnvelope(BaseModel):
    data: CashbackProgramResponse | None


class ProgramMutationData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inserted_id: UUID | None = Field(None, alias="insertedId")
    updated_id: UUID | None = Field(None, alias="updatedId")


class ProgramMutationResponse(BaseModel):
    data: ProgramMutationData
    message: str


class BalanceEnvelope(BaseModel):
    data: CashbackBalanceResponse


class TransactionsEnvelope(BaseModel):
    data: List[CashbackTransactionResponse]


class RedeemableData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    available_amount: float = Field(..., alias="availableAmount")
    max_redeemable: float = Field(..., alias="maxRedeemable")


class RedeemableEnvelope(BaseModel):
    data: RedeemableData


def _raise_http(exc: CashbackError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post(
    "/redemption",
    response_model=RedemptionResponse,
    summary="Redeem cashback at the point of sale",
)
async def redeem_cashback(
    payload: RedemptionRequest,
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    try:
        result = await redeem(
            db,
            organization_id=payload.org_id,
            client_id=payload.client_id,
            sale_value=payload.sale_value,
            redemption_value=payload.redemption_value,
            operator_identifier=payload.operator_identifier,
        )
        await db.commit()
    except CashbackError as exc:
        await db.rollback()
        _raise_http(exc)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Cashback redemption failed", organization_id=str(payload.org_id), error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE) from exc

    return RedemptionResponse(
        data=RedemptionData(
            transaction_id=result.transaction_id,
            new_balance=float(result.new_balance),
            new_redeemed_total=float(result.new_redeemed_total),
        ),
        message=REDEMPTION_SUCCESS_MESSAGE,
    )


@router.get(
    "/organizations/{organization_id}/program",
    response_model=ProgramEnvelope,
    dependencies=[Depends(require_internal_api_key)],
)
async def get_cashback_program(
    organization_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> ProgramEnvelope:
    program = await CashbackProgramService(db).get_program(organization_id)
    if program is None:
        return ProgramEnvelope(data=None)
    return ProgramEnvelope(data=CashbackProgramResponse.model_validate(program))


@router.post(
    "/organizations/{organization_id}/program",
    response_model=ProgramMutationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_internal_api_key)],
)
async def create_cashback_program(
    organization_id: UUID,
    payload: CashbackProgramInput,
    db: AsyncSession = Depends(get_session),
) -> ProgramMutationResponse:
    try:
        program = await CashbackProgramService(db).create_program(organization_id, payload)
        await db.commit()
    except CashbackError as exc:
        await db.rollback()
        _raise_http(exc)

    return ProgramMutationResponse(
        data=ProgramMutationData(inserted_id=program.id),
        message="Programa de cashback criado com sucesso.",
    )


@router.put(
    "/organizations/{organization_id}/program/{program_id}",
    response_model=ProgramMutationResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def update_cashback_program(
    organization_id: UUID,
    program_id: UUID,
    payload: CashbackProgramInput,
    db: AsyncSession = Depends(get_session),
) -> ProgramMutationResponse:
    try:
        program = await CashbackProgramService(db).update_program(organization_id, program_id, payload)
        await db.commit()
    except CashbackError as exc:
        await db.rollback()
        _raise_http(exc)

    return ProgramMutationResponse(
        data=ProgramMutationData(updated_id=program.id),
        message="Programa de cashback atualizado com sucesso.",
    )


@router.get(
    "/organizations/{organization_id}/clients/{client_id}/balance",
    response_model=BalanceEnvelope,
    dependencies=[Depends(require_internal_api_key)],
)
async def get_client_balance(
    organization_id: UUID,
    client_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> BalanceEnvelope:
    program = await CashbackProgramService(db).get_program(organization_id)
    if program is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Programa de cashback não encontrado.")

    balance = await get_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
        lock=False,
    )
    if balance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Saldo de cashback não encontrado para este cliente.",
        )

    reconciliation = await reconcile_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
    )
    response = CashbackBalanceResponse.model_validate(balance)
    response.is_consistent = reconciliation.is_consistent
    return BalanceEnvelope(data=response)


@router.get(
    "/organizations/{organization_id}/clients/{client_id}/redeemable",
    response_model=RedeemableEnvelope,
    dependencies=[Depends(require_internal_api_key)],
)
async def get_redeemable_amount(
    organization_id: UUID,
    client_id: UUID,
    sale_value: Decimal = Query(..., gt=0, alias="saleValue"),
    db: AsyncSession = Depends(get_session),
) -> RedeemableEnvelope:
    program = await CashbackProgramService(db).get_program(organization_id)
    if program is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Programa de cashback não encontrado.")
    balance = await get_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
        lock=False,
    )
    available = balance.available_amount if balance is not None else Decimal("0")
    maximum = max_redeemable_amount(
        available,
        sale_value,
        program.redemption_limit_type,
        program.redemption_limit_value,
    )
    return RedeemableEnvelope(
        data=RedeemableData(available_amount=float(available), max_redeemable=float(maximum)),
    )


@router.get(
    "/organizations/{organization_id}/clients/{client_id}/transactions",
    response_model=TransactionsEnvelope,
    dependencies=[Depends(require_internal_api_key)],
)
async def list_client_transactions(
    organization_id: UUID,
    client_id: UUID,
    transaction_type: CashbackTransactionType | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
) -> TransactionsEnvelope:
    stmt = (
        select(CashbackTransaction)
        .where(
            CashbackTransaction.organization_id == organization_id,
            CashbackTransaction.client_id == client_id,
        )
        .order_by(CashbackTransaction.created_at.desc())
        .limit(limit)
    )
    if transaction_type is not None:
        stmt = stmt.where(CashbackTransaction.transaction_type == transaction_type)
    transactions = (await db.execute(stmt)).scalars().all()
    return TransactionsEnvelope(
        data=[CashbackTransactionResponse.model_validate(entry) for entry in transactions],
    )


@router.post(
    "/sales/{sale_id}/cancel",
    response_model=ReversalResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def cancel_sale(
    sale_id: UUID,
    payload: SaleCancellationRequest | None = Body(None),
    db: AsyncSession = Depends(get_session),
) -> ReversalResponse:
    reason = payload.reason if payload is not None else SaleCancellationRequest().reason
    try:
        result = await SaleLifecycleService(db).cancel_sale(sale_id, reason=reason)
        await db.commit()
    except CashbackNotFoundError as exc:
        await db.rollback()
        _raise_http(exc)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Sale cancellation failed", sale_id=str(sale_id), error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE) from exc

    return ReversalResponse(
        reversed_transactions_count=result.reversed_transactions_count,
        total_reversed_amount=float(result.total_reversed_amount),
        canceled_interactions_count=result.canceled_interactions_count,
    )
