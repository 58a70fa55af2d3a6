#!/usr/bin/env python3
"""
Xiaomi Wi-Fi repeater firmware dump tool

Reads the whole SPI flash through the MT7628 debug console.

Usage:
    python3 spi_dump.py /dev/ttyUSB0 [--chunksize 512] [--sleep 0] [-o firmware.dump]
"""

import argparse
import os
import sys
import time
from dataclasses import dataclass

from spi_console import (
    BAUD_RATE, CHUNK_SIZES, ConfigurationError, ConsoleError, FramingError,
    SPIConsole, open_serial,
)

PROCESSOR = "MediaTek MT7628KN"
MEMORY = "Macronix MX25L1606E"
MEMORY_SIZE = 0x200000  # 2 MiB
MAX_SLEEP = 100


@dataclass
class DumpConfig:
    serial_name: str = ""
    chunk_size: int = 512
    cycle_sleep: int = 0
    file_name: str = "firmware.dump"
    memory_size: int = MEMORY_SIZE
    baud: int = BAUD_RATE
    frame_timeout: float = 0

    @property
    def cycles(self):
        return self.memory_size // self.chunk_size

    def validate(self):
        """Check parameter boundaries before any hardware is touched"""
        if self.chunk_size not in CHUNK_SIZES:
            sizes = '-'.join(str(s) for s in CHUNK_SIZES)
            raise ConfigurationError(f"Wrong chunk size, must be one of [{sizes}]")
        if not 0 <= self.cycle_sleep <= MAX_SLEEP:
            raise ConfigurationError(f"Cycle sleep must be between 0 and {MAX_SLEEP} ms")
        # Could be something like "/dev/ttyUSB0" or "COM1"
        if not self.serial_name:
            raise ConfigurationError("Serial port name should be specified!")
        if not self.file_name:
            raise ConfigurationError("Output file name should be specified!")
        if self.memory_size <= 0 or self.memory_size % self.chunk_size:
            raise ConfigurationError(
                f"Memory size {self.memory_size} is not a multiple of chunk size {self.chunk_size}")
        if self.baud <= 0:
            raise ConfigurationError(f"Invalid baud rate {self.baud}")
        if self.frame_timeout < 0:
            raise ConfigurationError("Frame timeout cannot be negative")


def print_banner(config):
    print()
    print("======= XIAOMI WI-FI REPEATER - FIRMWARE DUMP TOOL =======")
    print()
    print(f"= Processor: {PROCESSOR}")
    print(f"= Memory: {MEMORY}")
    print(f"= Chunk Size: {config.chunk_size} Bytes")
    print(f"= Cycle Sleep: {config.cycle_sleep} Milliseconds")
    print(f"= Filename: {config.file_name}")
    print(f"= Serial Port Name: {config.serial_name}")
    print(f"= Memory Size: {config.memory_size} Bytes")
    print(f"= Total Read Cycles: {config.cycles}")
    print()


def open_dump_file(file_name):
    """Create or truncate the dump file, readable by the owner only"""
    fd = os.open(file_name, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    return os.fdopen(fd, 'wb')


def dump_flash(console, config, progress=True):
    """Read the full flash chunk by chunk into config.file_name.

    config.memory_size must be a multiple of config.chunk_size.
    Returns the number of bytes written.
    """
    size = config.memory_size
    written = 0

    with open_dump_file(config.file_name) as f:
        for index in range(config.cycles):
            offset = index * config.chunk_size
            chunk = console.read_chunk(offset, config.chunk_size)
            f.write(chunk)
            written += len(chunk)

            if progress:
                pct = written * 100 // size
                print(f"\r  0x{offset:08X}  {written}/{size} bytes ({pct}%)", end='', flush=True)

            if config.cycle_sleep:
                time.sleep(config.cycle_sleep / 1000)

    if progress:
        print()
    return written


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Dump SPI flash through the MT7628 debug console')
    parser.add_argument('port', nargs='?', default='', help='Serial port, e.g. /dev/ttyUSB0 or COM1')
    parser.add_argument('--serialname', dest='serialname', default=None, help='Serial port (alternative to positional)')
    parser.add_argument('--chunksize', type=int, default=512,
                        help='Chunk size for firmware fragments [64-128-256-512-1024]')
    parser.add_argument('--sleep', type=int, default=0, help='Sleep between fragment reads [max 100 ms]')
    parser.add_argument('-o', '--filename', default='firmware.dump', help='File name for the dumped firmware')
    parser.add_argument('--size', type=lambda x: int(x, 0), default=MEMORY_SIZE,
                        help='Flash size in bytes (default 2MB)')
    parser.add_argument('--baud', type=int, default=BAUD_RATE, help='Baud rate')
    parser.add_argument('--timeout', type=float, default=0,
                        help='Seconds to wait for a complete response, 0 waits forever')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print commands and raw responses')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = DumpConfig(
        serial_name=args.serialname or args.port,
        chunk_size=args.chunksize,
        cycle_sleep=args.sleep,
        file_name=args.filename,
        memory_size=args.size,
        baud=args.baud,
        frame_timeout=args.timeout,
    )

    try:
        config.validate()
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        return 1

    print_banner(config)

    console = None
    try:
        console = SPIConsole(open_serial(config.serial_name, config.baud),
                             frame_timeout=config.frame_timeout or None,
                             verbose=args.verbose)
        console.travel_to_spi_menu()
        written = dump_flash(console, config)
    except FramingError as e:
        print()
        print(e.response)
        print(f"ERROR: {e}")
        return 1
    except (ConsoleError, OSError) as e:
        print()
        print(f"ERROR: {e}")
        return 1
    finally:
        if console:
            console.close()

    print(f"Saved {written} bytes to {config.file_name}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
