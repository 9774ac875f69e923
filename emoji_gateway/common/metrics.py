"""In-process counters rendered in Prometheus text exposition format."""

from collections import OrderedDict
from typing import Dict, Tuple

# name -> (type, help)
METRIC_DEFINITIONS: Dict[str, Tuple[str, str]] = OrderedDict([
    ("emoji_bot_up", ("gauge", "Service availability")),
    ("emoji_bot_stream_connected", ("gauge", "1 while the streaming connection is open")),
    ("emoji_bot_stream_reconnects_total", ("counter", "Streaming reconnect attempts")),
    ("emoji_bot_mentions_received_total", ("counter", "Mention events received from the stream")),
    ("emoji_bot_mentions_filtered_total", ("counter", "Mentions rejected by the eligibility filter")),
    ("emoji_bot_mentions_duplicate_total", ("counter", "Mentions dropped as duplicate deliveries")),
    ("emoji_bot_mentions_rate_limited_total", ("counter", "Mentions dropped by the per-user rate limit")),
    ("emoji_bot_mentions_empty_total", ("counter", "Mentions with no text after the bot mention")),
    ("emoji_bot_mentions_stray_confirmation_total", ("counter", "Yes/no replies with no pending proposal")),
    ("emoji_bot_mentions_failed_total", ("counter", "Mentions whose processing raised")),
    ("emoji_bot_generations_total", ("counter", "Successful emoji proposals")),
    ("emoji_bot_generation_failures_total", ("counter", "Failed emoji generations")),
    ("emoji_bot_registrations_total", ("counter", "Emoji registered after confirmation")),
    ("emoji_bot_registration_failures_total", ("counter", "Emoji registrations that failed")),
    ("emoji_bot_cancellations_total", ("counter", "Proposals rejected by the user")),
])


class GatewayMetrics:
    """Counters and gauges for the /metrics endpoint."""

    def __init__(self):
        self._values: Dict[str, float] = {name: 0 for name in METRIC_DEFINITIONS}
        self._values["emoji_bot_up"] = 1

    def inc(self, name: str, amount: float = 1) -> None:
        if name not in self._values:
            raise KeyError(f"Unknown metric: {name}")
        self._values[name] += amount

    def set(self, name: str, value: float) -> None:
        if name not in self._values:
            raise KeyError(f"Unknown metric: {name}")
        self._values[name] = value

    def get(self, name: str) -> float:
        return self._values[name]

    def render(self) -> str:
        lines = []
        for name, (kind, help_text) in METRIC_DEFINITIONS.items():
            value = self._values[name]
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} {kind}")
            lines.append(f"{name} {int(value) if float(value).is_integer() else value}")
        return "\n".join(lines) + "\n"
