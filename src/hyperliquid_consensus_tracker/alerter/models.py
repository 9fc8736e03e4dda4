"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FormattedAlert:
    """A signal alert rendered for every supported channel.

    Attributes:
        signal_id: Id of the signal the alert describes.
        title: Short headline.
        telegram_markdown: Body using Telegram's legacy Markdown mode.
        plain_text: Body without markup, used for logs and dry runs.
        links: Named URLs referenced by the alert.
    """

    signal_id: str
    title: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of sending one alert to one channel destination."""

    channel: str
    destination: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    """Aggregated outcome of dispatching one alert."""

    signal_id: str
    deliveries: tuple[DeliveryResult, ...] = ()
    skipped: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for d in self.deliveries if d.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for d in self.deliveries if not d.success)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.deliveries) and self.failure_count == 0
