from typing import Mapping, Optional


def mask_secret(text: str, secret: Optional[str]) -> str:
    return text.replace(secret, f"{secret[:4]}****") if secret else text


def redact_headers(headers: Mapping[str, str]) -> dict:
    """Copy of the headers that is safe to log: cookie and auth values are cut short."""
    sensitive = {"cookie", "authorization", "proxy-authorization"}
    return {
        name: mask_secret(value, value) if name.lower() in sensitive else value
        for name, value in headers.items()
    }
