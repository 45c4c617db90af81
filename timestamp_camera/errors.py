class CameraError(Exception):
    """Base class for errors raised by camera resources."""


class InvalidConfiguration(CameraError):
    """Raised when a resource config fails validation."""

    def __init__(self, field: str, message: str, path: str = ""):
        self.field = field
        self.path = path
        prefix = f"{path}: " if path else ""
        super().__init__(f"{prefix}{message}")


class EncodingError(CameraError):
    """Raised when an image cannot be produced in the requested format."""


class Unimplemented(CameraError):
    """Raised by every capability a resource does not support."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} is unimplemented")


class Closed(CameraError):
    """Raised when a resource is used after close()."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"resource {name} is closed")


class MustRebuild(CameraError):
    """Raised by reconfigure() when the resource has to be rebuilt."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"cannot reconfigure {name}; it must be rebuilt")


class ResourceNotFound(CameraError):
    """Raised when a registry or host lookup misses."""
