"""Protocol interfaces for the lending engine's external collaborators."""
from .event_sink import EventSink
from .notifier import Notifier
from .price_oracle import PriceOracle
from .settlement import SettlementLedger

__all__ = ["EventSink", "Notifier", "PriceOracle", "SettlementLedger"]
