"""PDU codec: validated request builders, request encoding and reply decoding."""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

from .buffer import DataBuffer
from .consts import (
    COIL_OFF,
    COIL_ON,
    ERROR_MASK,
    MAX_ADDRESS,
    MAX_COIL_COUNT_READ,
    MAX_COIL_COUNT_WRITE,
    MAX_REGISTER_COUNT_READ,
    MAX_REGISTER_COUNT_WRITE,
    MEI_HEADER_SIZE,
    MIN_ADDRESS,
    MIN_COUNT,
    MORE_FOLLOWS,
)
from .errors import InvalidArgumentError, ProtocolError
from .types import (
    READ_FUNCTIONS,
    Coil,
    DeviceIDCategory,
    DiscreteInput,
    FunctionCode,
    MEIType,
    Register,
    error_message,
)

logger = logging.getLogger(__name__)

DeviceIdRange = tuple[int, int]

_BIT_FUNCTIONS = frozenset({FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS})

_MAX_READ_COUNT: dict[FunctionCode, int] = {
    FunctionCode.READ_COILS: MAX_COIL_COUNT_READ,
    FunctionCode.READ_DISCRETE_INPUTS: MAX_COIL_COUNT_READ,
    FunctionCode.READ_HOLDING_REGISTERS: MAX_REGISTER_COUNT_READ,
    FunctionCode.READ_INPUT_REGISTERS: MAX_REGISTER_COUNT_READ,
}


@dataclass(frozen=True)
class Request:
    """One outgoing request; built per call and discarded after the exchange."""

    device_id: int
    function: FunctionCode
    address: int = 0
    count: int = 0
    data: DataBuffer | None = None
    transaction_id: int = 0
    mei_type: MEIType | None = None
    mei_category: DeviceIDCategory | None = None
    mei_object: int = 0

    def encode_pdu(self) -> bytes:
        """Function code followed by the function-specific payload."""
        fn = self.function
        if fn in READ_FUNCTIONS:
            body = self.address.to_bytes(2, "big") + self.count.to_bytes(2, "big")
        elif fn in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
            body = self.address.to_bytes(2, "big") + bytes(self._payload())
        elif fn == FunctionCode.WRITE_MULTIPLE_COILS:
            payload = bytes(self._payload())
            body = (
                self.address.to_bytes(2, "big")
                + self.count.to_bytes(2, "big")
                + bytes([len(payload)])
                + payload
            )
        elif fn == FunctionCode.WRITE_MULTIPLE_REGISTERS:
            # payload already starts with its byte count
            body = self.address.to_bytes(2, "big") + self.count.to_bytes(2, "big") + bytes(self._payload())
        elif fn == FunctionCode.ENCAPSULATED_INTERFACE:
            if self.mei_type is None or self.mei_category is None:
                raise ValueError("MEI request needs mei_type and mei_category")
            body = bytes([self.mei_type, self.mei_category, self.mei_object])
        else:
            raise ValueError(f"Unsupported function: {fn!r}")
        return bytes([fn]) + body

    def _payload(self) -> DataBuffer:
        if self.data is None:
            raise ValueError(f"{self.function.name} request needs a payload")
        return self.data


@dataclass
class Response:
    """Decoded reply: success data, a device exception, or a local timeout."""

    device_id: int
    function: int
    transaction_id: int = 0
    address: int = 0
    count: int = 0
    data: DataBuffer = field(default_factory=DataBuffer)
    error_code: int | None = None
    is_timeout: bool = False
    mei_type: int | None = None
    mei_category: int | None = None
    conformity_level: int = 0
    more_requests_needed: bool = False
    next_object_id: int = 0
    object_count: int = 0

    @classmethod
    def timeout(cls, request: Request) -> "Response":
        return cls(
            device_id=request.device_id,
            function=int(request.function),
            transaction_id=request.transaction_id,
            address=request.address,
            count=request.count,
            is_timeout=True,
        )

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    @property
    def error_message(self) -> str | None:
        if self.is_timeout:
            return "Response timed out"
        if self.error_code is None:
            return None
        return error_message(self.error_code)


# ============================================================================
# Validation
# ============================================================================


def check_device_id(device_id: int, device_ids: DeviceIdRange) -> None:
    low, high = device_ids
    if not low <= device_id <= high:
        raise InvalidArgumentError("device_id", f"device_id must be within {low}..{high}, got {device_id}")


def check_address_range(address: int, count: int, max_count: int) -> None:
    if not MIN_ADDRESS <= address <= MAX_ADDRESS:
        raise InvalidArgumentError("address", f"address must be within {MIN_ADDRESS}..{MAX_ADDRESS}, got {address}")
    if not MIN_COUNT <= count <= max_count:
        raise InvalidArgumentError("count", f"count must be within {MIN_COUNT}..{max_count}, got {count}")
    if address + count - 1 > MAX_ADDRESS:
        raise InvalidArgumentError(
            "count",
            f"address {address} + count {count} exceeds the last address {MAX_ADDRESS}",
        )


def _contiguous(items: Iterable, max_count: int) -> list:
    ordered = sorted(items, key=lambda item: item.address)
    if not ordered:
        raise InvalidArgumentError("count", "at least one element is required")
    if len(ordered) > max_count:
        raise InvalidArgumentError("count", f"count must be within {MIN_COUNT}..{max_count}, got {len(ordered)}")
    first = ordered[0].address
    for expected, item in enumerate(ordered, start=first):
        if item.address != expected:
            raise InvalidArgumentError(
                "address",
                f"addresses must be contiguous without gaps or duplicates (expected {expected}, got {item.address})",
            )
    check_address_range(first, len(ordered), max_count)
    return ordered


# ============================================================================
# Request builders
# ============================================================================


def read_request(
    function: FunctionCode,
    device_id: int,
    address: int,
    count: int,
    *,
    device_ids: DeviceIdRange,
    transaction_id: int = 0,
) -> Request:
    """Build a read request for coils, discrete inputs, holding or input registers."""
    function = FunctionCode(function)
    if function not in READ_FUNCTIONS:
        raise InvalidArgumentError("function", f"{function.name} is not a read function")
    check_device_id(device_id, device_ids)
    check_address_range(address, count, _MAX_READ_COUNT[function])
    return Request(
        device_id=device_id,
        function=function,
        address=address,
        count=count,
        transaction_id=transaction_id,
    )


def write_single_coil_request(
    device_id: int, coil: Coil, *, device_ids: DeviceIdRange, transaction_id: int = 0
) -> Request:
    check_device_id(device_id, device_ids)
    check_address_range(coil.address, 1, 1)
    data = DataBuffer(2)
    data.set_u16_be(0, COIL_ON if coil.value else COIL_OFF)
    return Request(
        device_id=device_id,
        function=FunctionCode.WRITE_SINGLE_COIL,
        address=coil.address,
        data=data,
        transaction_id=transaction_id,
    )


def write_single_register_request(
    device_id: int, register: Register, *, device_ids: DeviceIdRange, transaction_id: int = 0
) -> Request:
    check_device_id(device_id, device_ids)
    check_address_range(register.address, 1, 1)
    return Request(
        device_id=device_id,
        function=FunctionCode.WRITE_SINGLE_REGISTER,
        address=register.address,
        data=DataBuffer(bytes([register.hi_byte, register.lo_byte])),
        transaction_id=transaction_id,
    )


def write_coils_request(
    device_id: int, coils: Iterable[Coil], *, device_ids: DeviceIdRange, transaction_id: int = 0
) -> Request:
    """Multiple coils; sorted by address and rejected when not contiguous."""
    check_device_id(device_id, device_ids)
    ordered = _contiguous(coils, MAX_COIL_COUNT_WRITE)
    return Request(
        device_id=device_id,
        function=FunctionCode.WRITE_MULTIPLE_COILS,
        address=ordered[0].address,
        count=len(ordered),
        data=DataBuffer(pack_bits([c.value for c in ordered])),
        transaction_id=transaction_id,
    )


def write_registers_request(
    device_id: int, registers: Iterable[Register], *, device_ids: DeviceIdRange, transaction_id: int = 0
) -> Request:
    """Multiple registers; payload is the byte count followed by big-endian words."""
    check_device_id(device_id, device_ids)
    ordered = _contiguous(registers, MAX_REGISTER_COUNT_WRITE)
    data = DataBuffer(len(ordered) * 2 + 1)
    data.set_byte(0, len(ordered) * 2)
    for i, register in enumerate(ordered):
        data.set_u16_be(i * 2 + 1, register.value)
    return Request(
        device_id=device_id,
        function=FunctionCode.WRITE_MULTIPLE_REGISTERS,
        address=ordered[0].address,
        count=len(ordered),
        data=data,
        transaction_id=transaction_id,
    )


def device_information_request(
    device_id: int,
    category: DeviceIDCategory | int,
    object_id: int = 0,
    *,
    device_ids: DeviceIdRange,
    transaction_id: int = 0,
) -> Request:
    check_device_id(device_id, device_ids)
    try:
        category = DeviceIDCategory(category)
    except ValueError:
        raise InvalidArgumentError("category", f"Unknown device identification category: {category!r}") from None
    if not 0 <= int(object_id) <= 0xFF:
        raise InvalidArgumentError("object_id", f"object_id must be within 0..255, got {object_id}")
    return Request(
        device_id=device_id,
        function=FunctionCode.ENCAPSULATED_INTERFACE,
        mei_type=MEIType.READ_DEVICE_INFORMATION,
        mei_category=category,
        mei_object=int(object_id),
        transaction_id=transaction_id,
    )


# ============================================================================
# Decoding
# ============================================================================


def decode_pdu(device_id: int, pdu: bytes, request: Request, transaction_id: int = 0) -> Response:
    """
    Decode the PDU of a reply (function code + payload) for the given request.

    Returns a success or device-exception Response. Raises ProtocolError when
    the reply does not belong to the request or its payload is malformed.
    """
    if not pdu:
        raise ProtocolError("Empty reply")
    if device_id != request.device_id:
        raise ProtocolError(f"Reply from device {device_id}, expected {request.device_id}")

    fn = pdu[0]
    if fn & ERROR_MASK:
        if fn & ~ERROR_MASK != request.function:
            raise ProtocolError(f"Exception reply for function 0x{fn & ~ERROR_MASK:02X}, expected {request.function.name}")
        if len(pdu) != 2:
            raise ProtocolError(f"Exception reply must carry exactly one code byte, got {len(pdu) - 1}")
        logger.debug("Device %d answered %s with exception 0x%02X", device_id, request.function.name, pdu[1])
        return Response(
            device_id=device_id,
            function=fn,
            transaction_id=transaction_id,
            address=request.address,
            count=request.count,
            error_code=pdu[1],
        )

    if fn != request.function:
        raise ProtocolError(f"Reply function 0x{fn:02X} does not match {request.function.name}")

    body = pdu[1:]
    response = Response(device_id=device_id, function=fn, transaction_id=transaction_id)

    if fn in READ_FUNCTIONS:
        if not body:
            raise ProtocolError("Read reply without byte count")
        byte_count = body[0]
        if len(body) != byte_count + 1:
            raise ProtocolError(f"Read reply declares {byte_count} bytes but carries {len(body) - 1}")
        if fn in _BIT_FUNCTIONS:
            expected = math.ceil(request.count / 8)
        else:
            expected = request.count * 2
        if byte_count != expected:
            raise ProtocolError(f"Read reply has {byte_count} data bytes, expected {expected}")
        response.address = request.address
        response.count = request.count
        response.data = DataBuffer(body[1:])
    elif fn in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
        if len(body) != 4:
            raise ProtocolError(f"Write reply must carry 4 bytes, got {len(body)}")
        response.address = int.from_bytes(body[0:2], "big")
        response.data = DataBuffer(body[2:4])
    elif fn in (FunctionCode.WRITE_MULTIPLE_COILS, FunctionCode.WRITE_MULTIPLE_REGISTERS):
        if len(body) != 4:
            raise ProtocolError(f"Write reply must carry 4 bytes, got {len(body)}")
        response.address = int.from_bytes(body[0:2], "big")
        response.count = int.from_bytes(body[2:4], "big")
    elif fn == FunctionCode.ENCAPSULATED_INTERFACE:
        _decode_mei(body, response)
    else:
        raise ProtocolError(f"Unsupported function code 0x{fn:02X}")
    return response


def _decode_mei(body: bytes, response: Response) -> None:
    if len(body) < MEI_HEADER_SIZE:
        raise ProtocolError(f"Device identification reply too short: {len(body)} bytes")
    if body[0] != MEIType.READ_DEVICE_INFORMATION:
        raise ProtocolError(f"Unexpected MEI type 0x{body[0]:02X}")
    response.mei_type = body[0]
    response.mei_category = body[1]
    response.conformity_level = body[2]
    response.more_requests_needed = body[3] == MORE_FOLLOWS
    response.next_object_id = body[4]
    response.object_count = body[5]
    response.data = DataBuffer(body[MEI_HEADER_SIZE:])
    # walks the triples once so a malformed list is rejected here
    decode_device_objects(response)


def pack_bits(values: list[bool]) -> bytes:
    """Bit i goes to bit (i % 8) of byte (i // 8)."""
    out = bytearray(math.ceil(len(values) / 8))
    for i, value in enumerate(values):
        if value:
            out[i // 8] |= 1 << (i % 8)
    return bytes(out)


def unpack_bits(data: DataBuffer, count: int) -> list[bool]:
    return [bool(data.get_byte(i // 8) & (1 << (i % 8))) for i in range(count)]


def decode_coils(response: Response) -> list[Coil]:
    values = unpack_bits(response.data, response.count)
    return [Coil(response.address + i, v) for i, v in enumerate(values)]


def decode_discrete_inputs(response: Response) -> list[DiscreteInput]:
    values = unpack_bits(response.data, response.count)
    return [DiscreteInput(response.address + i, v) for i, v in enumerate(values)]


def decode_registers(response: Response) -> list[Register]:
    return [Register(response.address + i, response.data.get_u16_be(i * 2)) for i in range(response.count)]


def decode_device_objects(response: Response) -> list[tuple[int, bytes]]:
    """Return the (object id, value) pairs of a device identification reply, in order."""
    data = response.data
    objects: list[tuple[int, bytes]] = []
    idx = 0
    for _ in range(response.object_count):
        if idx + 2 > len(data):
            raise ProtocolError("Device identification object list is truncated")
        object_id = data.get_byte(idx)
        length = data.get_byte(idx + 1)
        idx += 2
        if idx + length > len(data):
            raise ProtocolError(f"Device identification object 0x{object_id:02X} is truncated")
        objects.append((object_id, data.get_range(idx, length)))
        idx += length
    if idx != len(data):
        raise ProtocolError(f"Device identification reply has {len(data) - idx} trailing bytes")
    return objects


def is_write_confirmed(request: Request, response: Response) -> bool:
    """Whether a write reply echoes the request (address + value, or address + count)."""
    if request.function in (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER):
        return response.address == request.address and response.data == request.data
    return response.address == request.address and response.count == request.count
