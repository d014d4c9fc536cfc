# Domain Layer
# ============
# Pure rules of the review-request pipeline, no I/O:
# - models.py: orders, queue items, notifications, businesses
# - status.py: monotonic notification status progression
# - sms_encoding.py / phone.py: SMS billing and number normalization
# - templates.py: message rendering and validation
# - errors.py: exception hierarchy shared by every layer

from .errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .models import (
    Business,
    IntegrationConfig,
    Notification,
    NotificationStatus,
    NotificationType,
    OrderData,
    Platform,
    QueuedOrder,
    QueueStatus,
    parse_datetime,
    utc_now,
)
from .phone import is_valid_phone_number, mask_phone, normalize_phone
from .sms_encoding import SmsEncodingInfo, calculate_sms_segments, requires_ucs2_encoding
from .status import should_update_status
from .templates import TemplateService, TemplateValidationResult

__all__ = [
    "AppError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
    "Business",
    "IntegrationConfig",
    "Notification",
    "NotificationStatus",
    "NotificationType",
    "OrderData",
    "Platform",
    "QueuedOrder",
    "QueueStatus",
    "parse_datetime",
    "utc_now",
    "is_valid_phone_number",
    "mask_phone",
    "normalize_phone",
    "SmsEncodingInfo",
    "calculate_sms_segments",
    "requires_ucs2_encoding",
    "should_update_status",
    "TemplateService",
    "TemplateValidationResult",
]
