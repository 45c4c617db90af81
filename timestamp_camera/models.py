from datetime import datetime
from typing import Any, Dict, List, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, StrictInt, ValidationError

from .errors import InvalidConfiguration


class Config(BaseModel):
    """Attributes of a timestamp-source-names camera."""

    model_config = ConfigDict(frozen=True)

    n_images: StrictInt = 0

    @classmethod
    def from_attributes(cls, attributes: Dict[str, Any] | None, path: str = "") -> "Config":
        try:
            return cls.model_validate(attributes or {})
        except ValidationError as e:
            field = ".".join(str(part) for part in e.errors()[0]["loc"]) or "attributes"
            raise InvalidConfiguration(field, f"invalid {field} attribute: {e.errors()[0]['msg']}", path) from e

    def validate_config(self, path: str = "") -> Tuple[List[str], List[str]]:
        """Checks the attributes and returns (required, optional) dependency names.

        This camera has no dependencies so both lists are always empty.
        """
        if self.n_images < 1:
            raise InvalidConfiguration("n_images", "n_images attribute must be greater than 0", path)
        return [], []


class ImageMetadata(BaseModel):
    mime_type: str


class ResponseMetadata(BaseModel):
    captured_at: datetime


class NamedImage(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    source_name: str
    image: np.ndarray


class Properties(BaseModel):
    supports_pcd: bool = False


class EncodedImage(BaseModel):
    source_name: str
    mime_type: str
    data: str  # base64


class ImagesResponse(BaseModel):
    images: List[EncodedImage]
    captured_at: datetime
