from __future__ import annotations

import requests
from flask import current_app


def send_email(*, to: str, subject: str, text: str) -> tuple[bool, str]:
    """POST one message to the configured mail API. Never raises."""
    url = (current_app.config.get("MAIL_API_URL") or "").strip()
    api_key = (current_app.config.get("MAIL_API_KEY") or "").strip()
    if not url or not api_key:
        return False, "MAIL_API_URL/MAIL_API_KEY not set"

    payload = {
        "from": current_app.config.get("MAIL_FROM") or "no-reply@digimarket.local",
        "to": [(to or "").strip()],
        "subject": subject or "",
        "text": text or "",
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        r = requests.post(url, json=payload, headers=headers, timeout=10)
        if 200 <= r.status_code < 300:
            j = r.json() if r.content else {}
            return True, str(j.get("id") or "sent")
        return False, f"mail_http_{r.status_code}"
    except (requests.RequestException, ValueError) as e:
        return False, f"mail_exception:{e}"
