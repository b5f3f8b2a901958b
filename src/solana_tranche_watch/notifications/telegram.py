"""Tranche change notifications delivered through the Telegram Bot API."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import requests

from ..config.settings import TelegramConfig, get_app_config
from ..core.tranches import Tranche
from ..errors import NotificationError
from ..monitoring.logger import get_logger


class Notifier(Protocol):
    def notify(self, mint: str, tranche: Tranche, market_cap: float) -> None:
        ...


def _format_market_cap(market_cap: float) -> str:
    value = float(market_cap)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_transition_message(mint: str, tranche: Tranche, market_cap: float) -> str:
    return (
        f"Coin with Mint: {mint} has moved to tranche: {tranche.value} "
        f"with Market Cap: {_format_market_cap(market_cap)}"
    )


class LoggingNotifier:
    """Writes notifications to the log instead of sending them."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)
        self.sent: list[str] = []

    def notify(self, mint: str, tranche: Tranche, market_cap: float) -> None:
        message = format_transition_message(mint, tranche, market_cap)
        self.sent.append(message)
        self._logger.info("[DRY RUN] %s", message, extra={"mint": mint, "tranche": tranche.value})


class TelegramNotifier:
    """Posts one ``sendMessage`` call per tranche change."""

    def __init__(
        self,
        config: Optional[TelegramConfig] = None,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().telegram
        if not self._config.enabled:
            raise ValueError("Telegram notifier requires both bot_token and chat_id")
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)
        self._url = (
            f"{str(self._config.api_base_url).rstrip('/')}/bot{self._config.bot_token}/sendMessage"
        )

    def notify(self, mint: str, tranche: Tranche, market_cap: float) -> None:
        payload: Dict[str, Any] = {
            "chat_id": self._config.chat_id,
            "text": format_transition_message(mint, tranche, market_cap),
            "disable_notification": self._config.disable_notification,
        }
        try:
            response = self._session.post(self._url, json=payload, timeout=self._config.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.HTTPError as exc:
            # The request URL embeds the bot token, so only the status is reported.
            status = exc.response.status_code if exc.response is not None else "unknown"
            raise NotificationError(f"Telegram HTTP error {status} for {mint}") from None
        except requests.RequestException as exc:
            raise NotificationError(f"Telegram request failed for {mint}: {type(exc).__name__}") from None
        except ValueError:
            raise NotificationError(f"Telegram returned a non-JSON body for {mint}") from None
        if isinstance(body, dict) and body.get("ok") is False:
            raise NotificationError(
                f"Telegram rejected message for {mint}: {body.get('description', 'unknown')}"
            )
        self._logger.info(
            "Telegram notification sent for %s", mint, extra={"tranche": tranche.value}
        )


__all__ = ["LoggingNotifier", "Notifier", "TelegramNotifier", "format_transition_message"]
