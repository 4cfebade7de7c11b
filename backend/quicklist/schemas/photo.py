import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class Photo:
    """One uploaded product photo (raw bytes + mime type)."""

    data: bytes
    mime_type: str = "image/jpeg"
    name: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.data)

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    @classmethod
    def from_data_url(cls, value: str, name: Optional[str] = None) -> Optional["Photo"]:
        """
        Accepts "data:image/png;base64,...." or raw base64.
        Returns None for http(s) links and undecodable payloads.
        """
        if not value or value.startswith("http"):
            return None
        mime = "image/jpeg"
        payload = value
        m = _DATA_URL_RE.match(value.strip())
        if m:
            mime, payload = m.group(1), m.group(2)
        try:
            data = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError):
            return None
        return cls(data=data, mime_type=mime, name=name)
