"""
Payment Rail - partner transfers

PayoutEngine talks to the payment rail through the PaymentRail protocol.
RazorpayRail sends money to a partner's linked account using Razorpay
Route transfers.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol

import razorpay
import requests

from app.config import settings

logger = logging.getLogger(__name__)


class RailError(Exception):
    """Transfer rejected or failed on the payment rail."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class RailTimeout(RailError):
    """Sent, but no answer in time. The transfer may still have gone through."""


class PaymentRail(Protocol):
    async def submit_transfer(
        self,
        amount_minor_units: int,
        currency: str,
        destination_account_id: str,
        metadata: Dict[str, str],
    ) -> str:
        """Submit a transfer and return the rail's transfer id. Raises RailError."""
        ...


class RazorpayRail:
    """
    Razorpay Route transfers.

    The SDK is synchronous; calls run in a worker thread so the event
    loop is not blocked.
    """

    def __init__(self, client: Optional[razorpay.Client] = None, timeout: Optional[float] = None):
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )
        self.timeout = timeout or settings.PAYMENT_RAIL_TIMEOUT_SECONDS

    def _create_transfer(
        self,
        amount_minor_units: int,
        currency: str,
        destination_account_id: str,
        metadata: Dict[str, str],
    ) -> str:
        transfer_data = {
            "account": destination_account_id,
            "amount": amount_minor_units,
            "currency": currency,
            "notes": {key: str(value) for key, value in metadata.items()},
        }

        try:
            transfer = self.client.transfer.create(data=transfer_data, timeout=self.timeout)
        except razorpay.errors.BadRequestError as e:
            raise RailError("BAD_REQUEST_ERROR", str(e)) from e
        except razorpay.errors.GatewayError as e:
            raise RailError("GATEWAY_ERROR", str(e)) from e
        except razorpay.errors.ServerError as e:
            raise RailError("SERVER_ERROR", str(e)) from e
        except requests.exceptions.ConnectTimeout as e:
            # Never reached Razorpay
            raise RailError("CONNECT_TIMEOUT", str(e)) from e
        except requests.exceptions.Timeout as e:
            raise RailTimeout("TIMEOUT", f"No response from Razorpay within {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Razorpay transfer failed: {e}")
            raise RailError("RAIL_ERROR", str(e)) from e

        logger.info(
            f"Created Razorpay transfer {transfer['id']} of {amount_minor_units} "
            f"{currency} to {destination_account_id}"
        )
        return transfer["id"]

    async def submit_transfer(
        self,
        amount_minor_units: int,
        currency: str,
        destination_account_id: str,
        metadata: Dict[str, str],
    ) -> str:
        return await asyncio.to_thread(
            self._create_transfer,
            amount_minor_units,
            currency,
            destination_account_id,
            metadata,
        )
