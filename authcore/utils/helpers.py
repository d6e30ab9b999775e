from typing import Any, Dict

from fastapi import Request
from user_agents import parse


def get_client_info(request: Request) -> Dict[str, Any]:
    """Extract client information from request."""
    ip_address = request.client.host if request.client else None

    # Check for forwarded IP (behind proxy)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        ip_address = real_ip

    return {
        "ip_address": ip_address,
        "device_info": parse_user_agent(request.headers.get("User-Agent", "")),
    }


def parse_user_agent(user_agent_string: str) -> str:
    """Summarise a User-Agent header as ``"<browser> on <os> (<device type>)"``."""
    if not user_agent_string:
        return "Unknown Device"

    user_agent = parse(user_agent_string)

    device_type = "Desktop"
    if user_agent.is_mobile:
        device_type = "Mobile"
    elif user_agent.is_tablet:
        device_type = "Tablet"
    elif user_agent.is_bot:
        device_type = "Bot"

    return f"{user_agent.browser.family} on {user_agent.os.family} ({device_type})"
