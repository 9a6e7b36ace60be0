"""
In-memory stand-ins for the marketplace API used by orchestrator tests.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

Response = Union[Dict[str, Any], BaseException]


def trade_event(
    price: Any = 3.3,
    timestamp: str = "2024-01-01T00:00:00",
    event_index: Optional[int] = 0,
    buyer: Optional[str] = "xch1buyer",
    seller: Optional[str] = "xch1seller",
    payments: Optional[List[Dict[str, Any]]] = None,
    event_type: int = 2,
    **extra: Any,
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "type": event_type,
        "timestamp": timestamp,
        "xch_price": price,
        "payments": payments or [],
        "address": {"encoded_id": buyer} if buyer else None,
        "previous_address": {"encoded_id": seller} if seller else None,
        "owner": None,
        "previous_owner": None,
        "event_index": event_index,
        "nft_id": "nft-id",
    }
    event.update(extra)
    return event


def details(*events: Dict[str, Any]) -> Dict[str, Any]:
    return {"events": list(events)}


class RecordingSleep:
    """Async sleep replacement that records delays and only yields to the loop."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeMarketplace:
    """
    Serves canned item details keyed by launcher.

    A response may be an exception instance, which is raised instead. Launchers
    without a response get an empty event list. ``on_fetch`` runs before every
    lookup with the launcher and the number of fetches so far.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None) -> None:
        self.responses: Dict[str, Response] = dict(responses or {})
        self.fetched: List[str] = []
        self.on_fetch: Optional[Callable[[str, int], None]] = None

    async def fetch_json(self, url: str, max_retries: Optional[int] = None) -> Any:
        launcher = url.rstrip("/").rsplit("/", 1)[-1]
        self.fetched.append(launcher)
        if self.on_fetch is not None:
            self.on_fetch(launcher, len(self.fetched))
        response = self.responses.get(launcher, {"events": []})
        if isinstance(response, BaseException):
            raise response
        return response
