"""Async client for the upstream dashboard analytics API.

Every transport outcome is translated into the dashboard error taxonomy here,
so callers only ever see ``NetworkFailure`` (or one of its subclasses).
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import httpx
from loguru import logger

from discom_dashboard.core.config import settings
from discom_dashboard.core.errors import MalformedResponse, NetworkFailure, NotFound
from discom_dashboard.schemas.filters import FilterSnapshot

DASHBOARD_PREFIX = "/api/dashboard"

# Option list kind -> identifier field of each returned item.
OPTION_FIELDS: Dict[str, str] = {
    "discoms": "discom_name",
    "regions": "region_name",
    "feeders": "feeder_meter_no",
    "dtus": "dtu_meter_no",
}


def _response_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("detail")
    return None


def unwrap_data(payload: Any) -> Any:
    """Return ``payload['data']`` when present, else the payload itself."""
    if isinstance(payload, dict) and payload.get("data") is not None:
        return payload["data"]
    return payload


class DashboardApiClient:
    """Thin async wrapper around ``httpx.AsyncClient``.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            transport=transport,
            timeout=timeout or settings.CHART_TIMEOUT_SEC,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        request_timeout = timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
        try:
            response = await self._client.request(
                method, path, params=params, json=json, timeout=request_timeout
            )
        except httpx.TimeoutException as exc:
            raise NetworkFailure(f"Request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise NetworkFailure(str(exc) or "Network Error") from exc

        if response.status_code == 404:
            raise NotFound(
                "Request failed with status code 404",
                status_code=404,
                detail=_response_detail(response),
            )
        if response.is_error:
            logger.bind(
                path=path, status=response.status_code
            ).warning("upstream_error_response")
            raise NetworkFailure(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
                detail=_response_detail(response),
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"Invalid JSON from {path}", status_code=response.status_code
            ) from exc

    # ---- filter options ----

    async def get_filter_options(
        self, kind: str, params: Optional[Mapping[str, str]] = None
    ) -> List[str]:
        """Identifiers for one option list (``discoms``, ``regions``, ...)."""
        if kind not in OPTION_FIELDS:
            raise ValueError(f"unknown option list: {kind}")
        payload = await self._request(
            "GET",
            f"{DASHBOARD_PREFIX}/filters/{kind}",
            params=params,
            timeout=settings.FILTER_OPTIONS_TIMEOUT_SEC,
        )
        data = unwrap_data(payload)
        items = data.get(kind) if isinstance(data, dict) else None
        if items is None:
            return []
        if not isinstance(items, list):
            raise MalformedResponse(f"'{kind}' is not a list")

        field = OPTION_FIELDS[kind]
        values: List[str] = []
        for item in items:
            if isinstance(item, dict):
                item = item.get(field)
            if item is None or item == "":
                continue
            values.append(str(item))
        return values

    # ---- kpis ----

    async def get_kpi(self, name: str, snapshot: FilterSnapshot) -> Dict[str, Any]:
        payload = await self._request(
            "GET",
            f"{DASHBOARD_PREFIX}/kpis/{name}",
            params=snapshot.to_query_params(),
            timeout=settings.KPI_TIMEOUT_SEC,
        )
        data = unwrap_data(payload)
        if not isinstance(data, dict):
            raise MalformedResponse(f"KPI '{name}' payload is not an object")
        return data

    async def get_kpi_breakdown(
        self, kpi_type: str, breakdown_level: str, params: Mapping[str, str]
    ) -> Dict[str, Any]:
        query = dict(params)
        query["kpi_type"] = kpi_type
        query["breakdown_level"] = breakdown_level
        payload = await self._request(
            "GET",
            f"{DASHBOARD_PREFIX}/kpis/breakdown",
            params=query,
            timeout=settings.KPI_TIMEOUT_SEC,
        )
        data = unwrap_data(payload)
        if not isinstance(data, dict):
            raise MalformedResponse("KPI breakdown payload is not an object")
        return data

    # ---- graphs and detail view ----

    async def get_graph(
        self,
        chart: str,
        snapshot: FilterSnapshot,
        extra_params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Raw graph payload; the normalizer unwraps the row collection."""
        params: Dict[str, Any] = snapshot.to_query_params()
        for key, value in (extra_params or {}).items():
            if value is not None and value != "":
                params[key] = value
        return await self._request(
            "GET",
            f"{DASHBOARD_PREFIX}/graphs/{chart}",
            params=params,
            timeout=settings.CHART_TIMEOUT_SEC,
        )

    async def post_detail_view(
        self,
        graph_type: str,
        data_point: Mapping[str, Any],
        filters: Mapping[str, Any],
        detail_level: str,
    ) -> Dict[str, Any]:
        payload = await self._request(
            "POST",
            f"{DASHBOARD_PREFIX}/detail-view",
            json={
                "graph_type": graph_type,
                "data_point": dict(data_point),
                "filters": dict(filters),
                "detail_level": detail_level,
            },
            timeout=settings.DETAIL_VIEW_TIMEOUT_SEC,
        )
        data = unwrap_data(payload)
        if not isinstance(data, dict):
            raise MalformedResponse("Detail view payload is not an object")
        return data

    # ---- assistant session boundary ----

    async def get_session_history(self, session_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/api/session/{session_id}/history")
        if not isinstance(payload, dict):
            raise MalformedResponse("Session history payload is not an object")
        return payload

    async def create_session(self, user_id: str) -> str:
        payload = await self._request("POST", "/api/session/create", json={"user_id": user_id})
        session_id = payload.get("session_id") if isinstance(payload, dict) else None
        if not session_id:
            raise MalformedResponse("Session create response has no session_id")
        return str(session_id)
