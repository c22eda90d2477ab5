"""
Payload and identity factories shared by the scenarios.

Keeping data generation in one module means every scenario produces
names the cleanup tooling (and a human reading server logs) can trace
back to a lane and an iteration.

Key Concepts Demonstrated:
- Collision-free identities from timestamp + lane + iteration
- Randomised payloads to defeat server-side caching
"""

from __future__ import annotations

import random
import time
from datetime import datetime, timezone
from typing import Any

from surge.http import JsonBody

DEFAULT_PASSWORD = "Password123!"


def _millis() -> int:
    return int(time.time() * 1000)


def unique_email(prefix: str, lane_id: int, iteration: int) -> str:
    """
    Build an email that is unique per lane and iteration.

    The millisecond timestamp keeps back-to-back runs from colliding;
    lane and iteration keep concurrent lanes from colliding within a
    run.
    """
    return f"{prefix}_{_millis()}_{lane_id}_{iteration}@example.com"


def random_product_payload(lane_id: int, iteration: int) -> dict[str, Any]:
    """
    Build a valid product-create payload.

    The name embeds the lane and iteration so that every created
    product can be traced back to the iteration that created it.
    """
    now = datetime.now(timezone.utc).isoformat()
    return {
        "name": f"LoadTest-{_millis()}-{lane_id}-{iteration}",
        "description": f"Load-test product created by lane {lane_id} at {now}",
        "price_cents": random.randint(1000, 100999),
        "stock": random.randint(1, 100),
    }


def product_update_payload(created: dict[str, Any]) -> dict[str, Any]:
    """Derive the update payload from the payload used to create a product."""
    return {
        "name": f"{created['name']} [UPDATED]",
        "description": f"{created['description']} - updated",
        "price_cents": created["price_cents"] + 500,
        "stock": max(1, created["stock"] - 3),
    }


def extract_resource_id(body: JsonBody) -> int | str | None:
    """
    Return the ``id`` of a JSON object body if it is usable in a URL.

    Integers (but not booleans) and non-blank strings are accepted;
    anything else, including an unparseable body, yields ``None``.
    """
    value = body.as_dict().get("id")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        return value
    return None
