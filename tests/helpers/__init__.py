from .fake_api import FakeMarketplace, RecordingSleep, details, trade_event
from .metric_delta import metric_delta, metric_value

__all__ = ["FakeMarketplace", "RecordingSleep", "details", "trade_event", "metric_delta", "metric_value"]
