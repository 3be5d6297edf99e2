import os
import subprocess

import settings

from .errors import DiskProvisionError
from .log import get_logger

logger = get_logger(__name__)


def create_image(path: str, size: str, fmt: str = "qcow2") -> str:
    """
    Create a sparse disk image with qemu-img.

    ``size`` is passed through untouched, so it must already carry the unit
    qemu-img expects (e.g. "10240M").
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    args = [settings.VM_QEMU_IMG_BIN, "create", "-f", fmt, path, size]
    logger.info("Creating disk %s (%s)", path, size)

    try:
        _ = subprocess.run(args, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise DiskProvisionError(path, size, (e.stdout or "") + (e.stderr or "")) from e
    except FileNotFoundError as e:
        raise DiskProvisionError(path, size, str(e)) from e
    return path
