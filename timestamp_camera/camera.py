import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

from .encoding import encode_image
from .errors import Closed
from .models import Config, ImageMetadata, NamedImage, ResponseMetadata
from .resource import CAMERA_API, Camera, Dependencies, Model, Registration, Registry

TIMESTAMP_SOURCE_NAMES = Model("viam-labs", "time-stamp-source-name", "timestamp-source-names")

IMAGE_WIDTH = 600
IMAGE_HEIGHT = 400
BLUE = (0, 0, 255, 255)


def make_reference_image(width: int = IMAGE_WIDTH, height: int = IMAGE_HEIGHT) -> np.ndarray:
    """Returns a read-only RGBA raster filled with opaque blue."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :] = BLUE
    pixels.flags.writeable = False
    return pixels


def now_local() -> datetime:
    return datetime.now().astimezone()


def format_timestamp(when: datetime) -> str:
    """Millisecond precision with an explicit offset, ``Z`` for UTC."""
    if when.tzinfo is None:
        when = when.astimezone()
    formatted = when.isoformat(timespec="milliseconds")
    if when.utcoffset().total_seconds() == 0:
        formatted = formatted[:-len("+00:00")] + "Z"
    return formatted


class TimestampSourceNames(Camera):
    """Camera returning n copies of one blue image, named by a shared capture timestamp."""

    def __init__(
        self,
        name: str,
        config: Config,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = now_local,
    ):
        super().__init__(name)
        self.logger = logger or logging.getLogger(f"timestamp_camera.{name}")
        self.n_images = config.n_images
        self.blue_pic = make_reference_image()
        self._clock = clock
        self._cancel = threading.Event()
        self.logger.info(f"Created {TIMESTAMP_SOURCE_NAMES} camera {name} with n_images={self.n_images}")

    @property
    def closed(self) -> bool:
        return self._cancel.is_set()

    def _check_open(self):
        if self._cancel.is_set():
            raise Closed(self.name)

    def image(self, mime_type: str, extra: Dict[str, Any] | None = None) -> Tuple[bytes, ImageMetadata]:
        self._check_open()
        data, actual = encode_image(self.blue_pic, mime_type)
        return data, ImageMetadata(mime_type=actual)

    def images(self, extra: Dict[str, Any] | None = None) -> Tuple[List[NamedImage], ResponseMetadata]:
        self._check_open()
        now = self._clock()
        timestamp = format_timestamp(now)
        result = [
            NamedImage(source_name=f"{timestamp}_{i}", image=self.blue_pic)
            for i in range(self.n_images)
        ]
        return result, ResponseMetadata(captured_at=now)

    def properties(self):
        self._check_open()
        return super().properties()

    def close(self):
        if not self._cancel.is_set():
            self.logger.info(f"Closing camera {self.name}")
        self._cancel.set()


def new_timestamp_source_names(
    name: str, config: Config, deps: Dependencies, logger: logging.Logger
) -> TimestampSourceNames:
    return TimestampSourceNames(name, config, logger)


def register(registry: Registry):
    registry.register(
        CAMERA_API,
        TIMESTAMP_SOURCE_NAMES,
        Registration(constructor=new_timestamp_source_names, config_cls=Config),
    )
