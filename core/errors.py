"""
Error taxonomy shared by the library, subscription and web layers.

Every error carries a classification (``kind``) and an HTTP-style ``code`` so
request handlers can turn it into a structured JSON error without knowing
which subsystem raised it.
"""
from typing import Any, Dict, Optional


class MusicServerError(Exception):
    """Base class for all music server errors"""

    code = 500
    kind = "internal"

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "kind": self.kind, "message": self.message}


class BadRequestError(MusicServerError):
    code = 400
    kind = "bad_request"


class NotFoundError(MusicServerError):
    code = 404
    kind = "not_found"


class MetadataError(MusicServerError):
    """A file could not be opened or its tag container could not be parsed"""

    kind = "metadata"


class SubscriptionError(MusicServerError):
    """SUBSCRIBE failed: network error, non-200 status or missing SID"""

    code = 502
    kind = "subscription"


class ControlError(MusicServerError):
    """A SOAP action on a zone player failed"""

    code = 502
    kind = "control"

    def __init__(self, message: str, upnp_error_code: Optional[int] = None):
        super().__init__(message)
        self.upnp_error_code = upnp_error_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.upnp_error_code is not None:
            result["upnp_error_code"] = self.upnp_error_code
        return result
