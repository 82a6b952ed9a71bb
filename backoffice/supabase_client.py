from __future__ import annotations

import json
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from backoffice.config import settings
from backoffice.errors import BackendRequestError


def _error_message(body: str) -> str:
    try:
        parsed = json.loads(body)
    except ValueError:
        return body
    if isinstance(parsed, dict):
        return parsed.get('message') or parsed.get('error') or body
    return body


class SupabaseClient:
    """Minimal client for the hosted Postgres REST surface."""

    def __init__(self, url: str | None = None, key: str | None = None, *, timeout_seconds: int | None = None) -> None:
        url = url or settings.supabase_url
        key = key or settings.supabase_key
        if not url or not key:
            raise RuntimeError('VITE_SUPABASE_URL and a Supabase key are required')
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout_seconds = timeout_seconds or settings.supabase_timeout_seconds
        self.headers = {
            'apikey': key,
            'Authorization': f'Bearer {key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: object = None,
        prefer: str | None = None,
    ) -> object:
        url = f'{self.base_url}/{path.lstrip("/")}'
        if params:
            url = f'{url}?{urlencode(params)}'
        headers = dict(self.headers)
        if prefer:
            headers['Prefer'] = prefer
        data = json.dumps(body).encode('utf-8') if body is not None else None
        req = Request(url=url, data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                raw = response.read().decode('utf-8')
        except HTTPError as exc:
            text = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise BackendRequestError(
                _error_message(text) or f'HTTP {exc.code}',
                status=exc.code,
                retryable=exc.code >= 500 or exc.code == 429,
            ) from exc
        except URLError as exc:
            raise BackendRequestError(f'Supabase network error: {exc.reason}', retryable=True) from exc
        except TimeoutError as exc:
            raise BackendRequestError('Supabase request timeout', retryable=True) from exc
        return json.loads(raw) if raw else None

    @staticmethod
    def eq_filters(filters: dict[str, object] | None) -> dict[str, str]:
        return {column: f'eq.{value}' for column, value in (filters or {}).items()}

    def select(self, table: str, *, columns: str = '*', filters: dict[str, object] | None = None, limit: int | None = None) -> list[dict]:
        params = {'select': columns, **self.eq_filters(filters)}
        if limit is not None:
            params['limit'] = str(limit)
        return self._request('GET', quote(table), params=params) or []

    def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        return self._request('POST', quote(table), body=rows, prefer='return=representation') or []

    def update(self, table: str, values: dict, *, filters: dict[str, object]) -> list[dict]:
        if not filters:
            raise ValueError('Refusing to update without filters')
        return (
            self._request('PATCH', quote(table), params=self.eq_filters(filters), body=values, prefer='return=representation')
            or []
        )

    def delete(self, table: str, *, filters: dict[str, object]) -> list[dict]:
        if not filters:
            raise ValueError('Refusing to delete without filters')
        return self._request('DELETE', quote(table), params=self.eq_filters(filters), prefer='return=representation') or []

    def rpc(self, function: str, args: dict | None = None) -> object:
        return self._request('POST', f'rpc/{quote(function)}', body=args or {})
