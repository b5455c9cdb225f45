"""PostgREST API client - backend implementation for the hosted data service."""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from pharmapos.services.backend_service import BackendResponse, normalize_filter, as_list

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _format_value(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def build_filter_params(filters: Optional[Dict[str, Any]]) -> List[tuple]:
    """
    Translate backend filters into PostgREST query parameters.

    Examples:
        {'id': 5} -> [('id', 'eq.5')]
        {'quantity': ('gte', 3)} -> [('quantity', 'gte.3')]
        {'id': ('in', [1, 2])} -> [('id', 'in.(1,2)')]
    """
    params = []
    for column, raw in (filters or {}).items():
        op, value = normalize_filter(raw)
        if op == 'in':
            joined = ','.join(_format_value(v) for v in value)
            params.append((column, f'in.({joined})'))
        else:
            params.append((column, f'{op}.{_format_value(value)}'))
    return params


class PostgrestClient:
    """HTTP client for a PostgREST (Supabase compatible) backend."""

    name = 'rest'

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: int = 10):
        """
        Initialize PostgREST client.

        Args:
            base_url: REST root, e.g. https://<project>.supabase.co/rest/v1
            api_key: service key sent as apikey and bearer token
            timeout: per-request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = requests.Session()
        self.http.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })
        if api_key:
            self.http.headers.update({
                'apikey': api_key,
                'Authorization': f'Bearer {api_key}',
            })

    def _request(self, method: str, table: str, params: List[tuple] = None,
                 body: Any = None, prefer: Optional[str] = None) -> BackendResponse:
        url = f"{self.base_url}/{table}"
        headers = {'Prefer': prefer} if prefer else {}
        data = json.dumps(body, default=_json_default) if body is not None else None

        try:
            response = self.http.request(
                method, url, params=params, data=data, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[BACKEND] {method} {table} network error: {e}")
            return BackendResponse(error={'message': str(e), 'code': 'network_error'})

        if response.status_code >= 400:
            try:
                error = response.json()
            except ValueError:
                error = {'message': response.text or response.reason}
            error.setdefault('code', str(response.status_code))
            error.setdefault('message', response.reason)
            logger.warning(f"[BACKEND] {method} {table} -> {response.status_code}: {error.get('message')}")
            return BackendResponse(error=error)

        if not response.content:
            return BackendResponse(data=[])
        return BackendResponse(data=response.json())

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[List[str]] = None, limit: Optional[int] = None) -> BackendResponse:
        params = [('select', '*')] + build_filter_params(filters)
        if order_by:
            params.append(('order', ','.join(
                f"{k[1:]}.desc" if k.startswith('-') else f"{k}.asc" for k in order_by
            )))
        if limit:
            params.append(('limit', str(limit)))
        return self._request('GET', table, params=params)

    def insert(self, table: str, rows) -> BackendResponse:
        return self._request('POST', table, body=as_list(rows), prefer='return=representation')

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> BackendResponse:
        if not filters:
            raise ValueError('update requires filters')
        return self._request('PATCH', table, params=build_filter_params(filters),
                             body=values, prefer='return=representation')

    def delete(self, table: str, filters: Dict[str, Any]) -> BackendResponse:
        if not filters:
            raise ValueError('delete requires filters')
        return self._request('DELETE', table, params=build_filter_params(filters),
                             prefer='return=representation')

    def upsert(self, table: str, rows, on_conflict: List[str]) -> BackendResponse:
        return self._request(
            'POST', table,
            params=[('on_conflict', ','.join(on_conflict))],
            body=as_list(rows),
            prefer='resolution=merge-duplicates,return=representation'
        )
