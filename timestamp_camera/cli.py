import argparse
import logging
import os
import sys

from .camera import TIMESTAMP_SOURCE_NAMES, register
from .encoding import MIME_TYPE_PNG, encode_image, extension_for
from .errors import CameraError
from .logging_utils import setup_logging
from .resource import CAMERA_API, Registry
from .settings import load_settings

logger = logging.getLogger("timestamp_camera.cli")


def parse_args(argv=None):
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Capture one batch from a timestamp-source-names camera.")
    parser.add_argument("--n-images", type=int, default=settings.n_images)
    parser.add_argument("--name", default=settings.resource_name)
    parser.add_argument("--output-dir", help="Write each image as <source_name>.<ext> into this directory")
    parser.add_argument("--mime-type", default=MIME_TYPE_PNG)
    parser.add_argument("--log-dir", default=settings.log_dir)
    return parser.parse_args(argv)


def run(args) -> list:
    registry = Registry()
    register(registry)
    cam = registry.construct(CAMERA_API, TIMESTAMP_SOURCE_NAMES, args.name, {"n_images": args.n_images})
    try:
        named, meta = cam.images()
        logger.info(f"Captured {len(named)} images at {meta.captured_at.isoformat()}")
        for item in named:
            logger.info(f"  {item.source_name}")
            if args.output_dir:
                os.makedirs(args.output_dir, exist_ok=True)
                data, actual = encode_image(item.image, args.mime_type)
                # ':' is not allowed in file names on every platform
                filename = f"{item.source_name.replace(':', '-')}.{extension_for(actual)}"
                filepath = os.path.join(args.output_dir, filename)
                with open(filepath, "wb") as f:
                    f.write(data)
        return [item.source_name for item in named]
    finally:
        cam.close()


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_dir, "timestamp_camera_cli")
    try:
        run(args)
    except CameraError as e:
        logger.error(f"Capture failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
