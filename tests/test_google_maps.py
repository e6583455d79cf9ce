"""Tests for src.integrations.google_maps — Distance Matrix travel estimates."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from conftest import NOW, brt
from src.integrations.google_maps import (
    GoogleMapsTravel,
    classify_traffic,
    estimate_travel,
    navigation_links,
)


def _mock_client(payload=None, error=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.get = AsyncMock(side_effect=error)
    else:
        mock_client.get = AsyncMock(return_value=mock_resp)
    return mock_client


def _ok_payload(free_flow=1200, in_traffic=1500, meters=12437):
    return {
        "status": "OK",
        "rows": [{"elements": [{
            "status": "OK",
            "duration": {"value": free_flow},
            "duration_in_traffic": {"value": in_traffic},
            "distance": {"value": meters},
        }]}],
    }


class TestClassifyTraffic:
    def test_levels(self):
        assert classify_traffic(20, 20) == "leve"
        assert classify_traffic(25, 20) == "moderado"
        assert classify_traffic(30, 20) == "pesado"

    def test_zero_free_flow(self):
        assert classify_traffic(10, 0) == "leve"


def test_navigation_links_encode_address():
    waze, maps = navigation_links("Rua XV 500, Curitiba")
    assert waze == "https://waze.com/ul?q=Rua+XV+500%2C+Curitiba&navigate=yes"
    assert maps.endswith("query=Rua+XV+500%2C+Curitiba")


class TestEstimateTravel:
    @pytest.mark.asyncio
    async def test_successful_estimate(self):
        client = _mock_client(_ok_payload())
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            result = await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 14), "fake-key", now=NOW)

        assert result.minutes == 25
        assert result.distance_km == 12.4
        assert result.traffic == "moderado"

    @pytest.mark.asyncio
    async def test_future_departure_uses_timestamp_and_best_guess(self):
        client = _mock_client(_ok_payload())
        departure = brt(2025, 2, 3, 14)
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            await estimate_travel("Casa", "Clínica", departure, "fake-key", now=NOW)

        params = client.get.call_args.kwargs["params"]
        assert params["departure_time"] == str(int(departure.timestamp()))
        assert params["traffic_model"] == "best_guess"

    @pytest.mark.asyncio
    async def test_imminent_departure_uses_now(self):
        client = _mock_client(_ok_payload())
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 10, 3), "fake-key", now=NOW)

        params = client.get.call_args.kwargs["params"]
        assert params["departure_time"] == "now"
        assert "traffic_model" not in params

    @pytest.mark.asyncio
    async def test_minutes_round_up(self):
        client = _mock_client(_ok_payload(free_flow=61, in_traffic=61))
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            result = await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 14), "fake-key", now=NOW)
        assert result.minutes == 2

    @pytest.mark.asyncio
    async def test_no_route_returns_none(self):
        payload = {"status": "OK", "rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]}
        client = _mock_client(payload)
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            assert await estimate_travel("Casa", "Lua", brt(2025, 2, 3, 14), "fake-key", now=NOW) is None

    @pytest.mark.asyncio
    async def test_api_error_status_returns_none(self):
        client = _mock_client({"status": "REQUEST_DENIED"})
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            assert await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 14), "fake-key", now=NOW) is None

    @pytest.mark.asyncio
    async def test_network_error_returns_none(self):
        client = _mock_client(error=httpx.ConnectTimeout("timeout"))
        with patch("src.integrations.google_maps.httpx.AsyncClient", return_value=client):
            assert await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 14), "fake-key", now=NOW) is None

    @pytest.mark.asyncio
    async def test_missing_key_skips_call(self):
        with patch("src.integrations.google_maps.httpx.AsyncClient") as client_cls:
            assert await estimate_travel("Casa", "Clínica", brt(2025, 2, 3, 14), "") is None
        client_cls.assert_not_called()


@pytest.mark.asyncio
async def test_port_adapter_delegates():
    with patch("src.integrations.google_maps.estimate_travel", AsyncMock(return_value=None)) as est:
        await GoogleMapsTravel("k").estimate("Casa", "Clínica", brt(2025, 2, 3, 14))
    est.assert_awaited_once_with("Casa", "Clínica", brt(2025, 2, 3, 14), "k")
