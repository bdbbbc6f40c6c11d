"""Transport framers: MBAP envelope for TCP, CRC-checked frames for serial RTU."""

import logging
import struct
from abc import ABC, abstractmethod
from typing import Callable

import crcmod.predefined

from .consts import (
    CRC_SIZE,
    ERROR_MASK,
    MAX_DEVICE_ID_RTU,
    MAX_DEVICE_ID_TCP,
    MAX_MBAP_LENGTH,
    MBAP_HEADER_SIZE,
    MEI_HEADER_SIZE,
    MIN_DEVICE_ID_RTU,
    MIN_DEVICE_ID_TCP,
    MIN_MBAP_LENGTH,
)
from .errors import FrameChecksumError, ProtocolError
from .protocol import DeviceIdRange, Request, Response, decode_pdu
from .types import READ_FUNCTIONS, WRITE_FUNCTIONS, FunctionCode

logger = logging.getLogger(__name__)

ReadExact = Callable[[int], bytes]

_MBAP = struct.Struct(">HHHB")
_MBAP_PREFIX = struct.Struct(">HHH")

crc16 = crcmod.predefined.mkCrcFun("modbus")


class Framer(ABC):
    """Turns requests into wire frames and reads exactly one reply frame back."""

    name: str
    device_ids: DeviceIdRange

    @abstractmethod
    def encode(self, request: Request) -> bytes:
        """Complete frame for the request."""

    @abstractmethod
    def read_frame(self, read_exact: ReadExact) -> bytes:
        """Read one complete reply frame using read_exact(n) -> exactly n bytes."""

    @abstractmethod
    def decode(self, frame: bytes, request: Request) -> Response:
        """Decode a frame returned by read_frame for the given request."""


class TcpFramer(Framer):
    """
    MBAP framing: [transaction id:2][protocol id:2 = 0][length:2][device id:1][PDU].
    The length field counts the device id and the PDU.
    """

    name = "tcp"
    device_ids = (MIN_DEVICE_ID_TCP, MAX_DEVICE_ID_TCP)

    def encode(self, request: Request) -> bytes:
        pdu = request.encode_pdu()
        return _MBAP.pack(request.transaction_id, 0, len(pdu) + 1, request.device_id) + pdu

    def read_frame(self, read_exact: ReadExact) -> bytes:
        header = read_exact(MBAP_HEADER_SIZE)
        following = int.from_bytes(header[4:6], "big")
        if not MIN_MBAP_LENGTH <= following <= MAX_MBAP_LENGTH:
            raise ProtocolError(f"MBAP length {following} out of range")
        return header + read_exact(following)

    def decode(self, frame: bytes, request: Request) -> Response:
        if len(frame) < MBAP_HEADER_SIZE:
            raise ProtocolError(f"MBAP header too short: {len(frame)} bytes")
        transaction_id, protocol_id, length = _MBAP_PREFIX.unpack_from(frame)
        if protocol_id != 0:
            raise ProtocolError(f"Unexpected protocol id {protocol_id}")
        if length < 2 or len(frame) - MBAP_HEADER_SIZE != length:
            raise ProtocolError(f"MBAP length {length} does not match frame size {len(frame)}")
        if transaction_id != request.transaction_id:
            raise ProtocolError(
                f"Transaction id mismatch: sent {request.transaction_id}, received {transaction_id}"
            )
        return decode_pdu(frame[MBAP_HEADER_SIZE], frame[MBAP_HEADER_SIZE + 1 :], request, transaction_id)


class RtuFramer(Framer):
    """
    Serial RTU framing: [device id:1][PDU][CRC:2, low byte first].
    The reply length is derived from the function code since there is no envelope.
    """

    name = "rtu"
    device_ids = (MIN_DEVICE_ID_RTU, MAX_DEVICE_ID_RTU)

    def encode(self, request: Request) -> bytes:
        adu = bytes([request.device_id]) + request.encode_pdu()
        return adu + crc16(adu).to_bytes(CRC_SIZE, "little")

    def read_frame(self, read_exact: ReadExact) -> bytes:
        frame = bytearray(read_exact(2))
        fn = frame[1]
        if fn in READ_FUNCTIONS:
            byte_count = read_exact(1)
            frame += byte_count
            frame += read_exact(byte_count[0])
        elif fn in WRITE_FUNCTIONS:
            frame += read_exact(4)
        elif fn == FunctionCode.ENCAPSULATED_INTERFACE:
            header = read_exact(MEI_HEADER_SIZE)
            frame += header
            for _ in range(header[-1]):
                id_and_length = read_exact(2)
                frame += id_and_length
                frame += read_exact(id_and_length[1])
        elif fn & ERROR_MASK:
            frame += read_exact(1)
        else:
            raise ProtocolError(f"Unexpected function code 0x{fn:02X} in serial reply")
        frame += read_exact(CRC_SIZE)
        return bytes(frame)

    def decode(self, frame: bytes, request: Request) -> Response:
        if len(frame) < 2 + CRC_SIZE:
            raise ProtocolError(f"Serial frame too short: {len(frame)} bytes")
        adu = frame[:-CRC_SIZE]
        received = int.from_bytes(frame[-CRC_SIZE:], "little")
        expected = crc16(adu)
        if received != expected:
            raise FrameChecksumError(expected, received)
        return decode_pdu(adu[0], adu[1:], request)
