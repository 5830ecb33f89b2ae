"""
Proxy error taxonomy
"""


class ProxyError(Exception):
    """Base class for every error raised by the relay pipeline"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(ProxyError):
    """Missing or malformed target URL on the inbound request"""

    status_code = 400


class ResolutionFailure(ProxyError):
    """A reference inside markup cannot be made absolute"""


class DecodeFailure(ProxyError):
    """The declared content-encoding could not be undone"""


class UpstreamFailure(ProxyError):
    """The outbound fetch failed (network, timeout, DNS, transport)"""
