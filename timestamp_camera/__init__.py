from .camera import TIMESTAMP_SOURCE_NAMES, TimestampSourceNames, register
from .errors import Closed, EncodingError, InvalidConfiguration, MustRebuild, ResourceNotFound, Unimplemented
from .models import Config
from .resource import CAMERA_API, Registry

__version__ = "0.1.0"
