"""Resource plumbing shared by camera models.

A ``Registry`` maps an (API, model) pair to the constructor that builds a
resource from validated attributes. Models register themselves with an
explicit call at startup, e.g. ``camera.register(registry)``.

``Camera`` is the capability surface every camera model exposes. Only
``image``, ``images``, ``properties`` and ``close`` are expected to be
overridden; everything else raises ``Unimplemented``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple, Type

from pydantic import BaseModel

from .errors import InvalidConfiguration, MustRebuild, ResourceNotFound, Unimplemented
from .models import ImageMetadata, NamedImage, Properties, ResponseMetadata


@dataclass(frozen=True)
class API:
    namespace: str
    type: str
    subtype: str

    def __str__(self):
        return f"{self.namespace}:{self.type}:{self.subtype}"


@dataclass(frozen=True)
class Model:
    namespace: str
    family: str
    name: str

    def __str__(self):
        return f"{self.namespace}:{self.family}:{self.name}"

    @classmethod
    def from_string(cls, triplet: str) -> "Model":
        parts = triplet.split(":")
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"model must be namespace:family:name, got {triplet!r}")
        return cls(*parts)


CAMERA_API = API("rdk", "component", "camera")

Dependencies = Dict[str, Any]


class Camera:
    """Camera-like resource. Unsupported capabilities fail loudly."""

    def __init__(self, name: str):
        self.name = name

    def image(self, mime_type: str, extra: Dict[str, Any] | None = None) -> Tuple[bytes, ImageMetadata]:
        raise Unimplemented("image")

    def images(self, extra: Dict[str, Any] | None = None) -> Tuple[List[NamedImage], ResponseMetadata]:
        raise Unimplemented("images")

    def properties(self) -> Properties:
        return Properties(supports_pcd=False)

    def stream(self, *error_handlers):
        raise Unimplemented("stream")

    def next_point_cloud(self, extra: Dict[str, Any] | None = None):
        raise Unimplemented("next_point_cloud")

    def do_command(self, command: Dict[str, Any]) -> Dict[str, Any]:
        raise Unimplemented("do_command")

    def geometries(self, extra: Dict[str, Any] | None = None):
        raise Unimplemented("geometries")

    def subscribe_rtp(self, buffer_size: int, packets_cb: Callable):
        raise Unimplemented("subscribe_rtp")

    def unsubscribe(self, subscription_id: str):
        raise Unimplemented("unsubscribe")

    def reconfigure(self, config: BaseModel, deps: Dependencies | None = None):
        # config changes always tear the resource down and build a new one
        raise MustRebuild(self.name)

    def close(self):
        pass


Constructor = Callable[[str, BaseModel, Dependencies, logging.Logger], Camera]


@dataclass(frozen=True)
class Registration:
    constructor: Constructor
    config_cls: Type[BaseModel]


class Registry:
    def __init__(self):
        self._registrations: Dict[Tuple[API, Model], Registration] = {}

    def register(self, api: API, model: Model, registration: Registration):
        key = (api, model)
        if key in self._registrations:
            raise ValueError(f"{api} {model} is already registered")
        self._registrations[key] = registration

    def lookup(self, api: API, model: Model) -> Registration:
        try:
            return self._registrations[(api, model)]
        except KeyError:
            raise ResourceNotFound(f"no registration for {api} {model}") from None

    def models(self, api: API | None = None) -> List[Tuple[API, Model]]:
        return [key for key in self._registrations if api is None or key[0] == api]

    def construct(
        self,
        api: API,
        model: Model,
        name: str,
        attributes: Dict[str, Any] | None,
        deps: Dependencies | None = None,
        logger: logging.Logger | None = None,
    ) -> Camera:
        """Parse and validate attributes, then build the resource."""
        registration = self.lookup(api, model)
        path = f"components.{name}"
        config = registration.config_cls.from_attributes(attributes, path)
        validate = getattr(config, "validate_config", None)
        if validate is None:
            raise InvalidConfiguration("attributes", f"{model} config cannot be validated", path)
        validate(path)
        return registration.constructor(name, config, deps or {}, logger or logging.getLogger(f"timestamp_camera.{name}"))
