"""HTTP-level tests for the derivatives analytics API."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from derivatives_analytics.api import dependencies
from derivatives_analytics.api.dependencies import RequestContext
from derivatives_analytics.api.fastapi_app import create_app
from derivatives_analytics.api.routes import greeks as greeks_routes
from derivatives_analytics.core.portfolio import DerivativePosition

TENANT = "tenant-a"
BASE = "/api/v1/derivatives"


@pytest.fixture()
def client(store, sink, publisher, engine) -> Iterator[TestClient]:
    app = create_app()
    app.dependency_overrides[dependencies.get_market_data_store] = lambda: store
    app.dependency_overrides[dependencies.get_result_sink] = lambda: sink
    app.dependency_overrides[dependencies.get_event_publisher] = lambda: publisher
    app.dependency_overrides[dependencies.get_engine] = lambda: engine
    with TestClient(app) as test_client:
        test_client.headers.update({"X-Tenant-ID": TENANT, "X-User-ID": "analyst-1"})
        yield test_client


def _expiry(days: int) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


def _leg(kind: str, side: str, strike: float, entry: float) -> Dict[str, object]:
    return {
        "kind": kind,
        "side": side,
        "quantity": 1,
        "strike_price": strike,
        "expiration_date": _expiry(30),
        "entry_price": entry,
    }


def test_calculate_greeks_returns_snapshot(client: TestClient, publisher) -> None:
    response = client.post(f"{BASE}/greeks/calculate", json={"instrument_id": "AAPL-C-100"})
    assert response.status_code == 200
    data = response.json()

    assert data["instrument_id"] == "AAPL-C-100"
    assert data["model_used"] == "black_scholes"
    assert 0.0 < data["delta"] < 1.0
    assert "lambda" in data
    assert data["delta_cash"] == pytest.approx(data["delta"] * data["underlying_price"])
    assert response.headers.get("X-Request-ID")
    assert publisher.events[0][1]["user_id"] == "analyst-1"


def test_calculate_greeks_with_binomial_model(client: TestClient) -> None:
    response = client.post(
        f"{BASE}/greeks/calculate",
        json={"instrument_id": "AAPL-P-95", "pricing_model": "binomial", "volatility": 0.3},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["model_used"] == "binomial_100"
    assert data["steps"] == 100
    assert data["volatility"] == 0.3


def test_tenant_header_is_required(client: TestClient) -> None:
    response = client.post(
        f"{BASE}/greeks/calculate",
        json={"instrument_id": "AAPL-C-100"},
        headers={"X-Tenant-ID": ""},
    )
    assert response.status_code == 422


@pytest.mark.parametrize(
    ("instrument_id", "status_code"),
    [("UNKNOWN", 404), ("AAPL-F-1", 422)],
)
def test_greeks_error_mapping(client: TestClient, instrument_id: str, status_code: int) -> None:
    response = client.post(f"{BASE}/greeks/calculate", json={"instrument_id": instrument_id})
    assert response.status_code == status_code
    assert instrument_id in response.json()["detail"]


def test_missing_market_data_maps_to_service_unavailable(client: TestClient, store) -> None:
    store.set_underlying_price("AAPL", None)
    response = client.post(f"{BASE}/greeks/calculate", json={"instrument_id": "AAPL-C-100"})
    assert response.status_code == 503
    assert response.json()["detail"] == "Greeks calculation unavailable"


def test_invalid_pricing_model_is_rejected(client: TestClient) -> None:
    response = client.post(
        f"{BASE}/greeks/calculate",
        json={"instrument_id": "AAPL-C-100", "pricing_model": "heston"},
    )
    assert response.status_code == 422


def test_greeks_history_and_latest(client: TestClient) -> None:
    for _ in range(2):
        assert client.post(f"{BASE}/greeks/calculate", json={"instrument_id": "AAPL-C-100"}).status_code == 200

    history = client.get(f"{BASE}/greeks/AAPL-C-100/history", params={"days": 1, "limit": 5})
    assert history.status_code == 200
    assert history.json()["count"] == 2

    latest = client.get(f"{BASE}/greeks/AAPL-C-100/latest")
    assert latest.status_code == 200
    assert latest.json()["fresh"] is True
    assert latest.json()["max_age_seconds"] == 300.0

    assert client.get(f"{BASE}/greeks/AAPL-C-100/history", params={"days": 0}).status_code == 422


def test_latest_greeks_route_without_history(sink) -> None:
    response = asyncio.run(
        greeks_routes.latest(
            "AAPL-C-100",
            max_age_seconds=60.0,
            context=RequestContext(tenant_id=TENANT),
            sink=sink,
        )
    )
    assert response.fresh is False
    assert response.calculation is None


def test_implied_volatility_endpoint(client: TestClient) -> None:
    response = client.post(
        f"{BASE}/implied-volatility/calculate",
        json={"instrument_id": "AAPL-C-100", "market_price": 6.2},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["converged"] is True
    assert 0.1 < data["implied_volatility"] < 0.5
    assert data["iv_rank"] is None


def test_volatility_surface_endpoint(client: TestClient) -> None:
    assert client.get(f"{BASE}/volatility-surface/AAPL").status_code == 404

    for instrument_id, price in (("AAPL-C-100", 6.2), ("AAPL-P-95", 1.0)):
        solved = client.post(
            f"{BASE}/implied-volatility/calculate",
            json={"instrument_id": instrument_id, "market_price": price},
        )
        assert solved.status_code == 200
        assert solved.json()["underlying_symbol"] == "AAPL"

    response = client.get(f"{BASE}/volatility-surface/aapl")
    assert response.status_code == 200
    data = response.json()
    assert data["underlying_symbol"] == "AAPL"
    assert [point["instrument_id"] for point in data["points"]] == ["AAPL-P-95", "AAPL-C-100"]
    assert data["strikes"] == [95.0, 100.0]
    assert data["min_volatility"] <= data["average_volatility"] <= data["max_volatility"]


def test_build_strategy_endpoint(client: TestClient) -> None:
    payload = {
        "strategy_type": "bear_call_spread",
        "underlying_symbol": "aapl",
        "portfolio_id": "pf-1",
        "legs": [_leg("call", "sell", 100.0, 4.0), _leg("call", "buy", 110.0, 1.0)],
    }
    response = client.post(f"{BASE}/strategies/build", json=payload)
    assert response.status_code == 200
    data = response.json()

    assert data["underlying_symbol"] == "AAPL"
    assert data["max_profit"] == pytest.approx(3.0)
    assert data["max_loss"] == pytest.approx(7.0)
    assert data["breakevens"] == [pytest.approx(103.0)]
    assert len(data["legs"]) == 2
    assert data["legs"][0]["position_delta"] < 0.0


def test_strategy_read_endpoints(client: TestClient) -> None:
    payload = {
        "strategy_type": "bear_call_spread",
        "underlying_symbol": "AAPL",
        "portfolio_id": "pf-1",
        "legs": [_leg("call", "sell", 100.0, 4.0), _leg("call", "buy", 110.0, 1.0)],
    }
    created = client.post(f"{BASE}/strategies/build", json=payload).json()

    fetched = client.get(f"{BASE}/strategies/{created['strategy_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["strategy_id"] == created["strategy_id"]
    assert fetched.json()["max_loss"] == pytest.approx(7.0)

    listing = client.get(f"{BASE}/strategies/portfolio/pf-1").json()
    assert listing["portfolio_id"] == "pf-1"
    assert listing["count"] == 1
    assert listing["items"][0]["strategy_id"] == created["strategy_id"]
    assert client.get(f"{BASE}/strategies/portfolio/pf-2").json()["count"] == 0
    filtered = client.get(f"{BASE}/strategies/portfolio/pf-1", params={"strategy_type": "iron_condor"})
    assert filtered.json()["count"] == 0

    assert client.get(f"{BASE}/strategies/unknown").status_code == 404
    other_tenant = client.get(f"{BASE}/strategies/{created['strategy_id']}", headers={"X-Tenant-ID": "tenant-b"})
    assert other_tenant.status_code == 404


def test_build_strategy_rejects_bad_requests(client: TestClient) -> None:
    too_many = {
        "strategy_type": "custom",
        "underlying_symbol": "AAPL",
        "legs": [_leg("call", "buy", 100.0 + index, 1.0) for index in range(9)],
    }
    response = client.post(f"{BASE}/strategies/build", json=too_many)
    assert response.status_code == 400
    assert "at most 8 legs" in response.json()["detail"]

    empty = {"strategy_type": "custom", "underlying_symbol": "AAPL", "legs": []}
    assert client.post(f"{BASE}/strategies/build", json=empty).status_code == 400

    wrong_shape = {
        "strategy_type": "straddle",
        "underlying_symbol": "AAPL",
        "legs": [_leg("call", "buy", 100.0, 4.0)],
    }
    assert client.post(f"{BASE}/strategies/build", json=wrong_shape).status_code == 400


def test_margin_endpoint(client: TestClient) -> None:
    payload = {
        "positions": [
            {"instrument_id": "AAPL-C-100", "quantity": 2, "price": 5.9, "side": "short", "contract_size": 100},
        ],
        "underlying_prices": {"AAPL-C-100": 5.9},
        "volatilities": {"AAPL-C-100": 0.3},
        "scenarios": [{"name": "rally", "price_shift": 0.2}],
    }
    response = client.post(f"{BASE}/margin/calculate", json=payload)
    assert response.status_code == 200
    data = response.json()
    assert data["worst_scenario"] == "rally"
    assert data["portfolio_margin"] == pytest.approx(200.0 * 5.9 * 0.2)
    assert data["hedge_credit"] > 0.0

    assert client.post(f"{BASE}/margin/calculate", json={"positions": []}).status_code == 400


@pytest.mark.parametrize(
    "field, value",
    [("underlying_prices", -100.0), ("underlying_prices", 0.0), ("volatilities", -0.3), ("volatilities", 0.0)],
)
def test_margin_endpoint_rejects_non_positive_market_inputs(client: TestClient, field: str, value: float) -> None:
    payload = {
        "positions": [
            {"instrument_id": "AAPL-C-100", "quantity": 2, "price": 5.9, "side": "short", "contract_size": 100},
        ],
        field: {"AAPL-C-100": value},
    }
    assert client.post(f"{BASE}/margin/calculate", json=payload).status_code == 422


def test_mark_to_market_endpoint(client: TestClient) -> None:
    first = client.post(f"{BASE}/mark-to-market/AAPL-C-100")
    assert first.status_code == 200
    assert first.json()["market_price"] == 5.9
    assert first.json()["previous_valuation_id"] is None

    second = client.post(f"{BASE}/mark-to-market/AAPL-C-100", json={"market_price": 6.4})
    assert second.status_code == 200
    data = second.json()
    assert data["previous_valuation_id"] == first.json()["valuation_id"]
    assert data["daily_pnl"] == pytest.approx(0.5)

    assert client.post(f"{BASE}/mark-to-market/AAPL-F-1").status_code == 422


def test_portfolio_analytics_endpoint(client: TestClient, store) -> None:
    assert client.get(f"{BASE}/portfolios/pf-1/analytics").status_code == 400
    empty = client.get(f"{BASE}/portfolios/pf-1/analytics", params={"allow_empty": True})
    assert empty.status_code == 200
    assert empty.json()["position_count"] == 0

    store.add_position(TENANT, DerivativePosition("p1", "pf-1", "AAPL-C-100", 1.0))
    store.add_position(TENANT, DerivativePosition("p2", "pf-1", "AAPL-P-95", 1.0))
    response = client.get(f"{BASE}/portfolios/pf-1/analytics")
    assert response.status_code == 200
    data = response.json()
    assert data["position_count"] == 2
    assert data["total_notional"] == pytest.approx(200.0)
    assert [bucket["label"] for bucket in data["near_term_buckets"]] == ["0-7d", "7-14d", "14-30d"]
    assert "Portfolio may be under-diversified" in data["warnings"]


def test_monitoring_endpoints(client: TestClient) -> None:
    health = client.get("/healthz")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.headers["X-Content-Type-Options"] == "nosniff"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "dae_request_total" in metrics.text
