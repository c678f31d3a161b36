import logging
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioClient:
    """Minimal Twilio REST client for placing outbound calls.

    Every call is placed with async answering-machine detection and a status
    callback so the outcome handlers see each transition.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        public_host: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self.from_number = from_number
        self.public_host = public_host
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._client.aclose()

    def _url(self, path: str, **params) -> str:
        query = urlencode({k: v for k, v in params.items() if v})
        return f"https://{self.public_host}{path}" + (f"?{query}" if query else "")

    async def create_call(self, to: str, lead_id: str = "") -> dict:
        data = {
            "To": to,
            "From": self.from_number,
            "Url": self._url("/outbound-call-twiml", leadId=lead_id),
            "StatusCallback": self._url("/call-status"),
            "StatusCallbackEvent": ["initiated", "ringing", "answered", "completed"],
            "StatusCallbackMethod": "POST",
            "MachineDetection": "Enable",
            "AsyncAmd": "true",
            "AsyncAmdStatusCallback": self._url("/amd-status"),
            "AsyncAmdStatusCallbackMethod": "POST",
        }
        try:
            resp = await self._client.post(
                f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Calls.json",
                data=data,
                auth=self._auth,
            )
            resp.raise_for_status()
            body = resp.json()
            logger.info("Call %s placed to lead %s", body.get("sid"), lead_id or "?")
            return {"success": True, "call_sid": body["sid"], "status": body.get("status", "")}
        except httpx.HTTPStatusError as e:
            logger.error("create_call returned %s: %s", e.response.status_code, e.response.text)
            return {"success": False, "error": f"HTTP {e.response.status_code}"}
        except Exception as e:
            logger.error("create_call failed: %s", e)
            return {"success": False, "error": str(e)}
