"""
Prometheus metrics for monitoring
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

# ==================== Bid Metrics ====================

bids_total = Counter(
    'bidcart_bids_total',
    'Bid attempts by outcome',
    ['result']  # accepted, bid_too_low, self_bid, auction_not_active, ...
)

bid_acceptance_duration_seconds = Histogram(
    'bidcart_bid_acceptance_duration_seconds',
    'Time to validate and accept a bid',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)

bid_cas_retries_total = Counter(
    'bidcart_bid_cas_retries_total',
    'Lost compare-and-swap attempts on bid acceptance'
)

# ==================== Lifecycle Metrics ====================

auction_transitions_total = Counter(
    'bidcart_auction_transitions_total',
    'Auction state transitions',
    ['transition']  # scheduled, started, ended, cancelled
)

scheduler_sweep_duration_seconds = Histogram(
    'bidcart_scheduler_sweep_duration_seconds',
    'Time spent in one scheduler sweep',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

scheduler_sweep_failures_total = Counter(
    'bidcart_scheduler_sweep_failures_total',
    'Per-auction transition failures during sweeps'
)

# ==================== Real-time Metrics ====================

events_published_total = Counter(
    'bidcart_events_published_total',
    'Events handed to the real-time transport',
    ['event']
)

websocket_connections = Gauge(
    'bidcart_websocket_connections',
    'Current WebSocket connections',
    ['channel_kind']  # auction, admin
)


def get_metrics() -> bytes:
    """Get current metrics in Prometheus format"""
    return generate_latest()


__all__ = [
    "bids_total",
    "bid_acceptance_duration_seconds",
    "bid_cas_retries_total",
    "auction_transitions_total",
    "scheduler_sweep_duration_seconds",
    "scheduler_sweep_failures_total",
    "events_published_total",
    "websocket_connections",
    "get_metrics",
    "CONTENT_TYPE_LATEST",
]
