import base64
import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

import numpy as np
import requests
from pydantic import BaseModel, ConfigDict

from .encoding import DEFAULT_MIME_TYPE, decode_image

SOURCE_NAME_RE = re.compile(r"^(?P<timestamp>.+)_(?P<index>\d+)$")


def parse_source_name(source_name: str) -> Tuple[datetime, int]:
    """Split a ``<timestamp>_<index>`` source name into its capture time and index."""
    match = SOURCE_NAME_RE.match(source_name)
    if not match:
        raise ValueError(f"source name {source_name!r} is not <timestamp>_<index>")
    timestamp = match.group("timestamp")
    # fromisoformat only understands a trailing Z from 3.11 onwards
    if timestamp.endswith("Z"):
        timestamp = timestamp[:-1] + "+00:00"
    try:
        when = datetime.fromisoformat(timestamp)
    except ValueError as e:
        raise ValueError(f"source name {source_name!r} has a bad timestamp") from e
    return when, int(match.group("index"))


def group_by_timestamp(source_names: Iterable[str]) -> Dict[str, List[int]]:
    """Group source names by their timestamp prefix, indexes in order."""
    groups = defaultdict(list)
    for source_name in source_names:
        match = SOURCE_NAME_RE.match(source_name)
        if not match:
            raise ValueError(f"source name {source_name!r} is not <timestamp>_<index>")
        groups[match.group("timestamp")].append(int(match.group("index")))
    return {timestamp: sorted(indexes) for timestamp, indexes in groups.items()}


class ReceivedImage(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    source_name: str
    mime_type: str
    image: np.ndarray


class ImageSet(BaseModel):
    timestamp: str
    captured_at: datetime
    images: List[ReceivedImage]


class CameraClient:
    """Fetches image batches from a running camera node over HTTP."""

    def __init__(self, address: str, port: int = 5001, timeout: float = 10):
        self.base_url = f"http://{address}:{port}"
        self.timeout = timeout
        self.session = requests.Session()

    def capture_all(self, name: str = "camera", mime_type: str = DEFAULT_MIME_TYPE) -> ImageSet:
        """Capture one batch and check that every image shares a timestamp."""
        response = self.session.get(
            f"{self.base_url}/cameras/{name}/images",
            params={"mime_type": mime_type},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()

        images = [
            ReceivedImage(
                source_name=item["source_name"],
                mime_type=item["mime_type"],
                image=decode_image(base64.b64decode(item["data"]), item["mime_type"]),
            )
            for item in payload["images"]
        ]
        groups = group_by_timestamp(img.source_name for img in images)
        if len(groups) != 1:
            raise ValueError(f"expected one shared timestamp, got {sorted(groups)}")
        return ImageSet(
            timestamp=next(iter(groups)),
            captured_at=payload["captured_at"],
            images=images,
        )

    def close(self):
        self.session.close()
