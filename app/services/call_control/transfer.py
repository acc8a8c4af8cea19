"""Transfer with retry on the not-yet-answered race."""
import asyncio
import logging
from typing import Optional

from app.core.exceptions import TelnyxAPIError
from app.services.telnyx.client import TelnyxClient

logger = logging.getLogger(__name__)

TRANSFER_MAX_ATTEMPTS = 3
TRANSFER_BACKOFF_SECONDS = 0.2


async def transfer_with_retry(
    client: TelnyxClient,
    call_control_id: str,
    to: str,
    from_: Optional[str] = None,
) -> bool:
    """
    Transfer a leg, retrying only HTTP 422 with linear backoff
    (0.2s x attempt). Returns False once the transfer is hopeless.
    """
    for attempt in range(1, TRANSFER_MAX_ATTEMPTS + 1):
        try:
            await client.transfer(call_control_id, to, from_)
            logger.info(f"[TRANSFER] {call_control_id} to {to} (attempt {attempt})")
            return True
        except TelnyxAPIError as e:
            logger.error(f"[TRANSFER] Transfer error attempt {attempt}: {e}")
            if e.is_not_answered and attempt < TRANSFER_MAX_ATTEMPTS:
                await asyncio.sleep(TRANSFER_BACKOFF_SECONDS * attempt)
                continue
            return False
    return False


async def answer_then_transfer(
    client: TelnyxClient,
    call_control_id: str,
    to: str,
    from_: Optional[str] = None,
) -> bool:
    """Answer (errors ignored, the leg may already be up) then transfer."""
    try:
        await client.answer(call_control_id)
    except TelnyxAPIError as e:
        logger.warning(f"[TRANSFER] Answer error on {call_control_id}: {e}")
    return await transfer_with_retry(client, call_control_id, to, from_)


async def speak_apology(client: TelnyxClient, call_control_id: str, message: str) -> bool:
    """
    Speak the dead-end message. The ``call.speak.ended`` webhook hangs
    up afterwards. Failure on an already-ended leg is logged only.
    """
    try:
        await client.speak(call_control_id, message)
    except TelnyxAPIError as e:
        logger.warning(f"[TRANSFER] Apology on {call_control_id} failed: {e}")
        return False
    return True
