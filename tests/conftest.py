import random

import pytest
import serial

from spi_console import SPIConsole


def console_dump(data):
    """Render bytes the way the console prints them after 'spi rd'"""
    lines = []
    for i in range(0, len(data), 8):
        groups = [data[j:j + 4][::-1].hex().upper() for j in range(i, min(i + 8, len(data)), 4)]
        lines.append(' '.join(groups) + '\r\n')
    return ''.join(lines)


def console_response(command, data, prefix=''):
    """Echo, hex dump and the double blank line that ends every reply"""
    return prefix + command + '\r\n' + console_dump(data) + '\r\n\r\n'


class FakeConsoleSerial:
    """In-memory stand-in for serial.Serial talking to the router console.

    Output is handed out at most `fragment` bytes per read. With `stutter`
    set, every stutter-th read returns nothing, like a serial read timeout.
    """

    def __init__(self, memory, fragment=4096, echo=True, mute=False, stale=b'', stutter=0):
        self.memory = memory
        self.fragment = fragment
        self.stutter = stutter
        self.reads = 0
        self.echo = echo
        self.mute = mute
        self.pending = bytearray(stale)
        self.commands = []
        self.written = bytearray()
        self.fail_read = False
        self.fail_write = False
        self.closed = False

    @property
    def in_waiting(self):
        return len(self.pending)

    def write(self, data):
        if self.fail_write:
            raise serial.SerialException("write failed")
        self.written += data
        for token in data.decode().split(';'):
            if token:
                self._execute(token)
        return len(data)

    def _execute(self, token):
        if self.mute:
            return
        if not token.startswith('spi rd '):
            self.pending += f"{token}\r\nMT7628 # ".encode()
            return
        self.commands.append(token)
        _, _, addr, length = token.split()
        addr, length = int(addr, 16), int(length)
        out = console_response(token, self.memory[addr:addr + length])
        if not self.echo:
            out = out[len(token):]
        self.pending += out.encode()

    def read(self, size=1):
        if self.fail_read:
            raise serial.SerialException("read failed")
        self.reads += 1
        if self.stutter and self.reads % self.stutter == 0:
            return b''
        n = min(size, self.fragment, len(self.pending))
        data = bytes(self.pending[:n])
        del self.pending[:n]
        return data

    def close(self):
        self.closed = True


@pytest.fixture
def memory():
    rng = random.Random(7628)
    return bytes(rng.randrange(256) for _ in range(1024))


@pytest.fixture
def fake_serial(memory):
    return FakeConsoleSerial(memory)


@pytest.fixture
def console(fake_serial):
    return SPIConsole(fake_serial)
