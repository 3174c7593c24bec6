# Core module
from .utils import log_info, log_debug, log_warning, log_error, set_log_level
from .errors import MusicServerError, BadRequestError, NotFoundError, MetadataError, SubscriptionError, ControlError
