#!/usr/bin/env python3
"""
MT7628 debug console SPI flash reader

The vendor console only has a human readable "spi rd" command. Its reply is
the command echo followed by a hex dump and a double blank line:

    spi rd 0x00000100 16\r\n
    04030201 08070605\r\n
    0C0B0A09 100F0E0D\r\n
    \r\n
    \r\n

Each 8 digit group holds 4 bytes in reversed order.
"""

import time

import serial

BAUD_RATE = 115200

# Menu path back to the top level "os" context, where spi commands live
MENU_SEQUENCE = b";up;up;os;"
READ_COMMAND = "spi rd 0x%08X %d"
STATEMENT_END = ";"
TERMINATOR = b"\r\n\r\n\r\n"

CHUNK_SIZES = (64, 128, 256, 512, 1024)


class ConsoleError(Exception):
    """Base class for everything that aborts a dump"""


class TransportError(ConsoleError):
    """Serial port could not be opened, read or written"""


class FramingError(ConsoleError):
    """Console output could not be matched to the issued command"""

    def __init__(self, message, response=""):
        super().__init__(message)
        self.response = response


class DecodeError(ConsoleError):
    """Hex dump did not decode to the requested bytes"""


class ConfigurationError(ConsoleError):
    """Invalid user supplied parameter"""


def build_read_command(offset, length):
    """Format the spi read command, e.g. 'spi rd 0x00000000 64'"""
    return READ_COMMAND % (offset, length)


def payload_length(length):
    """Characters of hex dump the console prints for `length` bytes.

    Every 4 byte group is 8 digits plus a space, and every second group
    ends the line with CRLF instead, which costs one more character.
    """
    return length * 2 + length // 4 + length // 8


def reverse_groups(tokens):
    """Undo the console's byte order: '04030201' -> '01020304'"""
    encoded = ""
    for v in tokens:
        if len(v) != 8:
            raise DecodeError(f"Bad hex group {v!r}, expected 8 digits")
        encoded += v[6:8] + v[4:6] + v[2:4] + v[0:2]
    return encoded


def decode_frame(response, command, length):
    """Extract `length` raw bytes from a framed console response"""
    # The console echoes what was typed, the dump starts after the CRLF
    cmd_index = response.find(command)
    if cmd_index == -1:
        raise FramingError(
            "Could not find command echo, please plug the device again to "
            "clear the UART buffer and wait for the boot process to complete",
            response)
    start = cmd_index + len(command) + 2

    chunk = response[start:start + payload_length(length)]
    # Line breaks separate groups just like spaces do
    chunk = chunk.replace('\r', ' ').replace('\n', ' ').strip()

    encoded = reverse_groups(chunk.split())
    try:
        data = bytes.fromhex(encoded)
    except ValueError as e:
        raise DecodeError(f"Could not decode the hex string: {e}") from e

    if len(data) != length:
        raise DecodeError(f"Decoded {len(data)} bytes, expected {length}")
    return data


def open_serial(port, baud=BAUD_RATE, timeout=0.5):
    """Open the serial link to the router"""
    try:
        return serial.Serial(port, baud, timeout=timeout)
    except (serial.SerialException, OSError) as e:
        raise TransportError(f"Could not create serial port connection: {e}") from e


class SPIConsole:
    def __init__(self, ser, frame_timeout=None, verbose=False):
        self.ser = ser
        self.frame_timeout = frame_timeout
        self.verbose = verbose

    def close(self):
        self.ser.close()

    def write(self, data):
        try:
            self.ser.write(data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Could not write to serial port: {e}") from e

    def read(self, capacity):
        """Read whatever is pending, at most `capacity` bytes, blocking for one"""
        try:
            return self.ser.read(min(self.ser.in_waiting, capacity) or 1)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Could not read serial port: {e}") from e

    def travel_to_spi_menu(self, settle=0.3):
        """Go to the top level menu, if not already there, and drop stale output"""
        self.write(MENU_SEQUENCE)
        time.sleep(settle)
        self.read(2048)

    def read_frame(self, offset, length):
        """Send a read command and collect output up to the terminator"""
        command = build_read_command(offset, length)
        if self.verbose:
            print(f"> {command}")
        self.write((command + STATEMENT_END).encode())

        # Fresh buffer per frame, the console may split its output anywhere
        capacity = length * 2 + 63
        response = bytearray()
        start = time.time()
        while TERMINATOR not in response:
            if self.frame_timeout and time.time() - start > self.frame_timeout:
                raise FramingError(
                    f"No response terminator after {self.frame_timeout}s "
                    f"for '{command}'", response.decode('latin-1'))
            response += self.read(capacity)

        # latin-1 keeps one character per byte so echo offsets stay exact
        text = response.decode('latin-1')
        if self.verbose:
            print(repr(text))
        return text

    def read_chunk(self, offset, length):
        """Read and decode `length` bytes of flash at `offset`"""
        response = self.read_frame(offset, length)
        return decode_frame(response, build_read_command(offset, length), length)
