"""Protocol limits shared by the codec and both clients."""

DEFAULT_TCP_PORT = 502

# TCP allows any unit id; serial reserves 0 for broadcast and 248..255.
MIN_DEVICE_ID_TCP = 0
MAX_DEVICE_ID_TCP = 255
MIN_DEVICE_ID_RTU = 1
MAX_DEVICE_ID_RTU = 247

MIN_ADDRESS = 0
MAX_ADDRESS = 0xFFFF

MIN_COUNT = 1
MAX_COIL_COUNT_READ = 2000
MAX_COIL_COUNT_WRITE = 1968
MAX_REGISTER_COUNT_READ = 125
MAX_REGISTER_COUNT_WRITE = 123

ERROR_MASK = 0x80
COIL_ON = 0xFF00
COIL_OFF = 0x0000

MBAP_HEADER_SIZE = 6
# unit id + function code, up to unit id + a 253-byte PDU
MIN_MBAP_LENGTH = 2
MAX_MBAP_LENGTH = 254
CRC_SIZE = 2
MEI_HEADER_SIZE = 6
MORE_FOLLOWS = 0xFF
