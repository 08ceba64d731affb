from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from cashback_api.core.settings import settings
from cashback_api.models import RedemptionLimitType
from cashback_api.services.cashback import accumulate
from cashback_api.services.sales import SaleLifecycleService
from conftest import seed_ledger

API_KEY = "test-internal-key"
HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture(autouse=True)
def internal_api_key(monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", API_KEY)


async def _seed_with_balance(session_factory, amount=Decimal("1000"), **program_fields):
    async with session_factory() as session:
        seed = await seed_ledger(session, **program_fields)
        await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("0"),
            program=seed.program,
            accumulation_value_override=amount,
        )
        await session.commit()
    return seed


def _redemption_body(seed, **overrides):
    body = {
        "orgId": str(seed.organization.id),
        "clientId": str(seed.client.id),
        "saleValue": 5000,
        "redemptionValue": 800,
        "operatorIdentifier": "1234",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_redemption_endpoint_success(app_with_db) -> None:
    app, session_factory = app_with_db
    seed = await _seed_with_balance(
        session_factory,
        redemption_limit_type=RedemptionLimitType.FIXED,
        redemption_limit_value=Decimal("800"),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/cashback/redemption", json=_redemption_body(seed))

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Resgate realizado com sucesso."
    assert payload["data"]["newBalance"] == 200
    assert payload["data"]["newResgatadoTotal"] == 800
    assert payload["data"]["transactionId"]


@pytest.mark.asyncio
async def test_redemption_endpoint_maps_errors_to_status_codes(app_with_db) -> None:
    app, session_factory = app_with_db
    seed = await _seed_with_balance(
        session_factory,
        redemption_limit_type=RedemptionLimitType.FIXED,
        redemption_limit_value=Decimal("800"),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        over_limit = await client.post(
            "/api/v1/cashback/redemption", json=_redemption_body(seed, redemptionValue=900)
        )
        wrong_operator = await client.post(
            "/api/v1/cashback/redemption", json=_redemption_body(seed, operatorIdentifier="0000")
        )
        unknown_org = await client.post(
            "/api/v1/cashback/redemption", json=_redemption_body(seed, orgId=str(uuid4()))
        )
        malformed = await client.post(
            "/api/v1/cashback/redemption", json={"orgId": str(seed.organization.id)}
        )

    assert over_limit.status_code == 400
    assert over_limit.json()["detail"] == "Valor de resgate excede o limite permitido. Máximo: R$ 8.00"
    assert wrong_operator.status_code == 401
    assert wrong_operator.json()["detail"] == "Operador não encontrado."
    assert unknown_org.status_code == 404
    assert unknown_org.json()["detail"] == "Organização não encontrada."
    assert malformed.status_code == 422


@pytest.mark.asyncio
async def test_program_endpoints_require_api_key_and_manage_program(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        seed = await seed_ledger(session, with_program=False)
        await session.commit()

    base = f"/api/v1/cashback/organizations/{seed.organization.id}/program"
    body = {
        "title": "Cashback Loja Centro",
        "accumulationType": "PERCENTAGE",
        "accumulationValue": 5,
        "expirationDays": 60,
        "prizes": [{"title": "Caneca", "value": 1500}],
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        unauthorized = await client.get(base)
        empty = await client.get(base, headers=HEADERS)
        created = await client.post(base, json=body, headers=HEADERS)
        duplicate = await client.post(base, json=body, headers=HEADERS)
        program_id = created.json()["data"]["insertedId"]
        [mug] = (await client.get(base, headers=HEADERS)).json()["data"]["prizes"]
        updated = await client.put(
            f"{base}/{program_id}",
            json={
                **body,
                "accumulationValue": 7,
                "redemptionLimitType": "FIXED",
                "redemptionLimitValue": 1000,
                "prizes": [
                    {"id": mug["id"], "title": "Caneca térmica", "value": 1800},
                    {"title": "Boné", "value": 2500},
                ],
            },
            headers=HEADERS,
        )
        fetched = await client.get(base, headers=HEADERS)
        cap = next(prize for prize in fetched.json()["data"]["prizes"] if prize["title"] == "Boné")
        pruned = await client.put(
            f"{base}/{program_id}",
            json={**body, "prizes": [{"id": cap["id"], "title": "Boné", "value": 2500, "delete": True}]},
            headers=HEADERS,
        )
        after_delete = await client.get(base, headers=HEADERS)
        invalid = await client.post(base, json={**body, "accumulationValue": 150}, headers=HEADERS)

    assert unauthorized.status_code == 401
    assert empty.json() == {"data": None}
    assert created.status_code == 201
    assert created.json()["message"] == "Programa de cashback criado com sucesso."
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Programa de cashback já existe."
    assert updated.status_code == 200
    assert updated.json()["data"]["updatedId"] == program_id

    program = fetched.json()["data"]
    assert program["accumulationType"] == "percentage"
    assert program["accumulationValue"] == 7
    assert program["redemptionLimitType"] == "fixed"
    prizes = {prize["title"]: prize for prize in program["prizes"]}
    assert sorted(prizes) == ["Boné", "Caneca térmica"]
    assert prizes["Caneca térmica"]["id"] == mug["id"]
    assert prizes["Caneca térmica"]["value"] == 1800

    assert pruned.status_code == 200
    remaining = after_delete.json()["data"]["prizes"]
    assert [(prize["id"], prize["title"]) for prize in remaining] == [(mug["id"], "Caneca térmica")]
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_balance_redeemable_and_transactions_endpoints(app_with_db) -> None:
    app, session_factory = app_with_db
    seed = await _seed_with_balance(
        session_factory,
        redemption_limit_type=RedemptionLimitType.PERCENTAGE,
        redemption_limit_value=Decimal("10"),
    )
    prefix = f"/api/v1/cashback/organizations/{seed.organization.id}/clients/{seed.client.id}"

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        balance = await client.get(f"{prefix}/balance", headers=HEADERS)
        redeemable = await client.get(f"{prefix}/redeemable", params={"saleValue": 5000}, headers=HEADERS)
        transactions = await client.get(f"{prefix}/transactions", params={"type": "accumulation"}, headers=HEADERS)
        redemptions = await client.get(f"{prefix}/transactions", params={"type": "redemption"}, headers=HEADERS)
        missing = await client.get(
            f"/api/v1/cashback/organizations/{seed.organization.id}/clients/{uuid4()}/balance",
            headers=HEADERS,
        )

    assert balance.status_code == 200
    data = balance.json()["data"]
    assert data["availableAmount"] == 1000
    assert data["accumulatedTotal"] == 1000
    assert data["redeemedTotal"] == 0
    assert data["isConsistent"] is True

    assert redeemable.json()["data"] == {"availableAmount": 1000, "maxRedeemable": 500}

    [entry] = transactions.json()["data"]
    assert entry["type"] == "accumulation"
    assert entry["status"] == "active"
    assert entry["amount"] == 1000
    assert entry["remainingAmount"] == 1000
    assert redemptions.json()["data"] == []

    assert missing.status_code == 404
    assert missing.json()["detail"] == "Saldo de cashback não encontrado para este cliente."


@pytest.mark.asyncio
async def test_cancel_sale_endpoint_reverses_cashback(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        seed = await seed_ledger(session)
        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id, seed.client.id, Decimal("10000")
        )
        await session.commit()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        canceled = await client.post(
            f"/api/v1/cashback/sales/{completion.sale.id}/cancel",
            json={"reason": "VENDA_CANCELADA_RETROATIVA"},
            headers=HEADERS,
        )
        repeated = await client.post(f"/api/v1/cashback/sales/{completion.sale.id}/cancel", headers=HEADERS)
        unknown = await client.post(f"/api/v1/cashback/sales/{uuid4()}/cancel", headers=HEADERS)

    assert canceled.status_code == 200
    assert canceled.json() == {
        "reversedTransactionsCount": 1,
        "totalReversedAmount": 500,
        "canceledInteractionsCount": 0,
    }
    assert repeated.json()["reversedTransactionsCount"] == 0
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "Venda não encontrada."
