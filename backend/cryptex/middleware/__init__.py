from cryptex.middleware.datetime_timezone import DatetimeTimezoneMiddleware
from cryptex.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["DatetimeTimezoneMiddleware", "SecurityHeadersMiddleware"]
