import logging

import httpx

from teambot.core.config import settings

logger = logging.getLogger(__name__)

BOT_URL = "https://api.groupme.com/v3/bots/post"


class MessageService:
    def __init__(self, bot_id: str = settings.GROUPME_BOT_ID,
                 timeout: float = settings.REQUEST_TIMEOUT,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.bot_id = bot_id
        self.timeout = timeout
        self.transport = transport

    async def send_message(self, text: str, image_url: str = "") -> bool:
        """Post to the group. Delivery problems are logged, never raised."""
        attachments = []
        if image_url:
            attachments.append({"type": "image", "url": image_url})
        payload = {"bot_id": self.bot_id, "text": text, "attachments": attachments}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(BOT_URL, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error sending the message: %s", e)
            return False

        if response.status_code != 202:
            logger.warning("Unexpected GroupMe return code: %d", response.status_code)
            return False
        return True
