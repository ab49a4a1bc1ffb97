"""Fixed request headers identifying the client as the GoBiz web dashboard."""

from typing import Dict

from merchant_relay.core.schemas.session import SessionRecord

PORTAL_ORIGIN = "https://portal.gofoodmerchant.co.id"

DASHBOARD_HEADERS: Dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "id",
    "Origin": PORTAL_ORIGIN,
    "Referer": PORTAL_ORIGIN + "/",
    "Authentication-Type": "go-id",
    "Gojek-Country-Code": "ID",
    "Gojek-Timezone": "Asia/Jakarta",
    "X-Appid": "go-biz-web-dashboard",
    "X-Appversion": "platform-v3.97.0-b986b897",
    "X-Deviceos": "Web",
    "X-Phonemake": "Windows 10 64-bit",
    "X-Phonemodel": "Chrome 143.0.0.0 on Windows 10 64-bit",
    "X-Platform": "Web",
    "X-User-Type": "merchant",
}


def base_headers(record: SessionRecord) -> Dict[str, str]:
    """Dashboard headers plus the per-account device id and user agent."""
    return {
        **DASHBOARD_HEADERS,
        "X-Uniqueid": record.account_handle,
        "User-Agent": record.user_agent,
    }
