from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from cashback_api.core.settings import settings
from cashback_api.observability.cashback import CashbackObservabilityStore, get_cashback_store


def test_store_aggregates_ledger_events() -> None:
    store = CashbackObservabilityStore()
    store.record_accumulation(Decimal("500"))
    store.record_accumulation(Decimal("300"), campaign=True)
    store.record_redemption(Decimal("200"))
    store.record_redemption_rejection("bad_request")
    store.record_reversal(transactions=2, amount=Decimal("600"), interactions=1)

    snapshot = store.snapshot().as_dict()
    assert snapshot["counters"] == {
        "accumulations": 2,
        "campaign_accumulations": 1,
        "redemptions": 1,
        "reversals": 1,
        "reversed_transactions": 2,
        "canceled_interactions": 1,
    }
    assert snapshot["amounts"] == {"accumulated": 800.0, "redeemed": 200.0, "reversed": 600.0}
    assert snapshot["rejections"] == {"bad_request": 1}

    store.reset()
    assert store.snapshot().counters == {}


@pytest.mark.asyncio
async def test_observability_endpoints_expose_snapshot_and_prometheus(monkeypatch) -> None:
    from cashback_api.app import create_app

    monkeypatch.setattr(settings, "internal_api_key", "obs-key")
    store = get_cashback_store()
    store.record_redemption(Decimal("800"))
    store.record_redemption_rejection("unauthorized")

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        denied = await client.get("/api/v1/observability/cashback")
        snapshot = await client.get("/api/v1/observability/cashback", headers={"X-API-Key": "obs-key"})
        metrics = await client.get("/api/v1/observability/prometheus", headers={"X-API-Key": "obs-key"})

    assert denied.status_code == 401
    assert snapshot.json()["counters"] == {"redemptions": 1}
    assert snapshot.json()["amounts"] == {"redeemed": 800.0}

    body = metrics.text
    assert "cashback_redemptions_total 1" in body
    assert "cashback_redeemed_amount_total 800.0" in body
    assert 'cashback_redemption_rejections_total{kind="unauthorized"} 1' in body
