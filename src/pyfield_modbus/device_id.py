"""Read Device Identification pagination: follow continuation replies and merge objects."""

import logging
from typing import Callable

from .errors import ProtocolError
from .protocol import Response, decode_device_objects
from .types import DeviceIDObject

logger = logging.getLogger(__name__)

FetchObjects = Callable[[int], Response | None]


def collect_device_objects(fetch: FetchObjects, object_id: int = DeviceIDObject.VENDOR_NAME) -> dict[int, bytes] | None:
    """
    Call fetch(object_id) until a reply no longer announces more objects.

    Objects are merged in first-seen order; an id already collected is never
    overwritten. fetch returning None (timeout or link failure) aborts the whole
    read and None is returned, so callers never see a partial map.
    """
    objects: dict[int, bytes] = {}
    requested: set[int] = set()
    next_id = int(object_id)
    while True:
        requested.add(next_id)
        response = fetch(next_id)
        if response is None:
            if objects:
                logger.warning("Device identification aborted after %d object(s)", len(objects))
            return None
        for oid, value in decode_device_objects(response):
            objects.setdefault(oid, value)
        if not response.more_requests_needed:
            return objects
        next_id = response.next_object_id
        if next_id in requested:
            raise ProtocolError(f"Device repeated continuation from object id 0x{next_id:02X}")
        logger.debug("More device identification objects follow, resuming at 0x%02X", next_id)


def decode_device_information(raw: dict[int, bytes]) -> dict[DeviceIDObject | int, str]:
    """Decode object values as ASCII; standard ids become DeviceIDObject members."""
    info: dict[DeviceIDObject | int, str] = {}
    for oid, value in raw.items():
        try:
            key: DeviceIDObject | int = DeviceIDObject(oid)
        except ValueError:
            key = oid
        info[key] = value.decode("ascii", errors="replace")
    return info
