from __future__ import annotations

from typing import Any, Dict

import requests


def _debug(msg: str) -> None:
    print(f"[factory] {msg}")


class FactoryError(Exception):
    """The factory refused or failed the order."""

    def __init__(self, message: str, *, report_url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.report_url = report_url
        self.status_code = status_code


def order_pizzas(
    base_url: str,
    api_key: str,
    *,
    diner: Dict[str, Any],
    order: Dict[str, Any],
    timeout: int = 30,
) -> Dict[str, Any]:
    """Send a stored order to the pizza factory.

    Endpoint: POST /api/order with `{diner: {id, name, email}, order}`.
    Returns the factory payload: `{jwt, reportUrl}`.
    """
    url = f"{base_url.rstrip('/')}/api/order"
    headers = {"Content-Type": "application/json", "authorization": f"Bearer {api_key}"}
    body = {
        "diner": {"id": diner.get("id"), "name": diner.get("name"), "email": diner.get("email")},
        "order": order,
    }

    _debug(f"Submitting order id={order.get('id')} to {url}")
    try:
        r = requests.post(url, json=body, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise FactoryError(f"factory unreachable: {e}") from e

    try:
        data = r.json() if r.text else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    if not r.ok:
        _debug(f"Factory error {r.status_code} for order id={order.get('id')}")
        raise FactoryError(
            f"factory error {r.status_code}",
            report_url=data.get("reportUrl"),
            status_code=r.status_code,
        )
    return data
