"""Abstract chat backend interface shared by every vendor."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from ..models import ChatCompletion, Message
from ..result import Err, Ok, Result

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A vendor call failed (network, auth, timeout, malformed reply)."""

    def __init__(self, message: str, *, vendor: str = "", cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.vendor = vendor
        self.cause = cause


class ChatBackend(ABC):
    """
    One vendor's chat-completion endpoint.

    The orchestrators only depend on `send_message`; subclasses implement
    `_complete` and may raise whatever their SDK raises.
    """

    vendor: str = ""

    def __init__(self, default_model: str, timeout: float = 90.0) -> None:
        self.default_model = default_model
        self.timeout = timeout

    @abstractmethod
    async def _complete(
        self,
        messages: list[Message],
        *,
        model: str,
        max_tokens: int,
        disable_search: bool,
        temperature: float | None,
    ) -> ChatCompletion:
        ...

    async def send_message(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        max_tokens: int = 256,
        disable_search: bool = True,
        temperature: float | None = None,
    ) -> Result[ChatCompletion, BackendError]:
        """Send the full message list and return the reply or a BackendError."""
        model_name = model or self.default_model
        try:
            completion = await asyncio.wait_for(
                self._complete(
                    messages,
                    model=model_name,
                    max_tokens=max_tokens,
                    disable_search=disable_search,
                    temperature=temperature,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("%s request timed out after %ss", self.vendor, self.timeout)
            return Err(BackendError(f"{self.vendor} request timed out after {self.timeout}s", vendor=self.vendor, cause=exc))
        except BackendError as exc:
            return Err(exc)
        except Exception as exc:  # SDK-specific errors
            logger.error("%s request failed: %s", self.vendor, exc)
            return Err(BackendError(str(exc) or type(exc).__name__, vendor=self.vendor, cause=exc))
        return Ok(completion)
