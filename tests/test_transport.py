"""Tests for the physical transports."""

from unittest.mock import MagicMock, patch

import pytest
import serial

from pyfield_modbus.config import Handshake, SerialSettings, TcpSettings
from pyfield_modbus.transport import SerialTransport, TcpTransport


class TestSerialTransport:
    """pyserial port handling."""

    @patch("pyfield_modbus.transport.serial.Serial")
    def test_open_passes_port_parameters(self, mock_serial_class: MagicMock) -> None:
        settings = SerialSettings(port="/dev/ttyUSB0", baudrate=9600, parity="O", handshake=Handshake.RTS_CTS)
        transport = SerialTransport(settings)
        transport.open()

        mock_serial_class.assert_called_once_with(
            port="/dev/ttyUSB0",
            baudrate=9600,
            bytesize=8,
            parity=serial.PARITY_ODD,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=True,
            dsrdtr=False,
            timeout=1.0,
            write_timeout=1.0,
        )

    @patch("pyfield_modbus.transport.serial.Serial")
    def test_empty_read_is_timeout(self, mock_serial_class: MagicMock) -> None:
        port = mock_serial_class.return_value
        port.is_open = True
        port.read.side_effect = [b"\x01", b""]
        transport = SerialTransport(SerialSettings(port="/dev/ttyUSB0"))
        transport.open()

        with pytest.raises(TimeoutError):
            transport.read_exact(2)

    @patch("pyfield_modbus.transport.serial.Serial")
    def test_write_timeout(self, mock_serial_class: MagicMock) -> None:
        port = mock_serial_class.return_value
        port.is_open = True
        port.write.side_effect = serial.SerialTimeoutException("write timeout")
        transport = SerialTransport(SerialSettings(port="/dev/ttyUSB0"))
        transport.open()

        with pytest.raises(TimeoutError):
            transport.write(b"\x01")

    @patch("pyfield_modbus.transport.serial.Serial")
    def test_close_and_discard(self, mock_serial_class: MagicMock) -> None:
        port = mock_serial_class.return_value
        port.is_open = True
        transport = SerialTransport(SerialSettings(port="/dev/ttyUSB0"))
        transport.open()
        transport.discard_input()
        port.reset_input_buffer.assert_called_once()

        transport.close()
        transport.close()
        port.close.assert_called_once()
        assert not transport.is_open
        with pytest.raises(ConnectionError):
            transport.write(b"\x01")


class TestTcpTransport:
    """Socket handling without a peer."""

    def test_not_open(self) -> None:
        transport = TcpTransport(TcpSettings(host="127.0.0.1"))
        assert not transport.is_open
        with pytest.raises(ConnectionError):
            transport.read(1)

    def test_cancelled_connect(self) -> None:
        transport = TcpTransport(TcpSettings(host="192.0.2.1"))
        transport.cancel()
        with pytest.raises(OSError):
            transport.open(timeout=1.0)
        assert not transport.is_open
