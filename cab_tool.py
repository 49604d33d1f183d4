#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
CAB image command line tool

    cab_tool.py new disk.img --format 1MB
    cab_tool.py format disk.img [--block-size 512] [--entries 1024]
    cab_tool.py write disk.img notes.txt [-n NAME]
    cab_tool.py take disk.img NAME [-o OUTPUT]
    cab_tool.py ls disk.img
    cab_tool.py info disk.img
    cab_tool.py map disk.img
    cab_tool.py check disk.img
"""

import argparse
import itertools
import logging
import os
import sys

from cab_backend.handler import CABImage
from cab_backend.layout import CABFormat, DEFAULT_BLOCK_SIZE, DEFAULT_DIRECTORY_CAPACITY
from cab_backend.errors import CABError
from cab_backend.cab_utils import format_file_type, format_size

logger = logging.getLogger("cab_tool")


def setup_logging(verbosity: int):
    """Send log records to stderr; -v shows INFO, -vv shows DEBUG"""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(filename)s:%(lineno)d - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cab_tool",
        description="CAB flat filesystem image utility",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log more detail (repeat for debug output)")
    sub = parser.add_subparsers(dest="cmd")

    # new: create and format a blank image from a preset
    p_new = sub.add_parser("new", help="Create a blank formatted image")
    p_new.add_argument("image", help="Output image path")
    p_new.add_argument("--format", default="1MB", choices=list(CABImage.FORMATS),
                       help="Image preset (default: 1MB)")

    # format: format an existing raw image in place
    p_fmt = sub.add_parser("format", help="Format an existing raw image")
    p_fmt.add_argument("image", help="Raw image path")
    p_fmt.add_argument("--block-size", type=int, default=DEFAULT_BLOCK_SIZE,
                       help=f"Bytes per block (default: {DEFAULT_BLOCK_SIZE})")
    p_fmt.add_argument("--entries", type=int, default=DEFAULT_DIRECTORY_CAPACITY,
                       help=f"Root directory capacity (default: {DEFAULT_DIRECTORY_CAPACITY})")

    # write: copy a host file into the image
    p_write = sub.add_parser("write", help="Write a file into an image")
    p_write.add_argument("image", help="Image path")
    p_write.add_argument("file", help="Host file to write")
    p_write.add_argument("-n", "--name", default=None,
                         help="Name in image (default: basename of file)")

    # take: copy a file out of the image
    p_take = sub.add_parser("take", help="Read a file out of an image")
    p_take.add_argument("image", help="Image path")
    p_take.add_argument("name", help="File name in the image")
    p_take.add_argument("-o", "--output", default=None,
                        help="Output path (default: write to stdout)")

    p_ls = sub.add_parser("ls", help="List files in an image")
    p_ls.add_argument("image", help="Image path")

    p_info = sub.add_parser("info", help="Show boot record and space usage")
    p_info.add_argument("image", help="Image path")

    p_map = sub.add_parser("map", help="Show free and used block runs")
    p_map.add_argument("image", help="Image path")

    p_chk = sub.add_parser("check", help="Cross-check the directory against the bitmap")
    p_chk.add_argument("image", help="Image path")

    return parser


def cmd_new(args) -> int:
    boot_record = CABImage.create_empty_image(args.image, args.format)
    print(f"Created {args.image} ({boot_record.image_bytes} bytes, {boot_record.total_blocks} blocks)")
    return 0


def cmd_format(args) -> int:
    fmt = CABFormat(block_size=args.block_size, directory_capacity=args.entries)
    boot_record = CABImage.format_image(args.image, fmt)
    print(f"Formatted {args.image} ({boot_record.total_blocks} blocks, "
          f"{boot_record.directory_capacity} directory entries)")
    return 0


def cmd_write(args) -> int:
    name = args.name or os.path.basename(args.file)
    with open(args.file, 'rb') as f:
        data = f.read()

    image = CABImage(args.image)
    entry = image.write_file_to_image(name, data)
    print(f"Wrote '{entry.name}' ({entry.size_bytes} bytes at block {entry.first_block})")
    return 0


def cmd_take(args) -> int:
    image = CABImage(args.image)
    data = image.read_file(args.name)
    if args.output:
        with open(args.output, 'wb') as f:
            f.write(data)
        print(f"Extracted '{args.name}' ({len(data)} bytes) to {args.output}")
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    return 0


def cmd_ls(args) -> int:
    image = CABImage(args.image)
    entries = image.read_root_directory()
    if not entries:
        print("(empty)")
        return 0

    print(f"{'Name':<24} {'Type':<10} {'Size':>10} {'On Disk':>10}  {'Block':>7}  {'Blocks':>6}")
    print("-" * 75)
    on_disk_total = 0
    for e in entries:
        on_disk = image.calculate_size_on_disk(e.size_bytes)
        on_disk_total += on_disk
        print(f"{e.name:<24} {format_file_type(e.file_type):<10} {e.size_bytes:>10} {on_disk:>10}  "
              f"{e.first_block:>7}  {e.block_count(image.block_size):>6}")
    print(f"{len(entries)} file(s), {format_size(on_disk_total)} on disk, "
          f"{format_size(image.get_free_space())} free")
    return 0


def cmd_info(args) -> int:
    image = CABImage(args.image)
    boot_record = image.boot_record
    used_entries = len(image.read_root_directory())

    print(f"Block size:          {boot_record.block_size}")
    print(f"Total blocks:        {boot_record.total_blocks}")
    print(f"Bitmap blocks:       {boot_record.bitmap_blocks} (at offset {boot_record.bitmap_offset})")
    print(f"Directory:           {used_entries}/{boot_record.directory_capacity} entries, "
          f"{boot_record.directory_blocks} blocks (at offset {boot_record.directory_offset})")
    print(f"Data starts at:      block {boot_record.data_first_block}")
    print(f"Capacity:            {format_size(image.get_total_capacity())}")
    print(f"Free:                {format_size(image.get_free_space())} "
          f"({image.get_free_block_count()} blocks)")
    print(f"Largest free run:    {image.get_largest_free_run()} blocks")
    return 0


def cmd_map(args) -> int:
    image = CABImage(args.image)
    bitmap = image.read_bitmap()
    block_map = image.get_block_map()

    def describe(block):
        return image.classify_block(bitmap, block), block_map.get(block, '')

    blocks = range(bitmap.addressable_bits)
    for (status, owner), group in itertools.groupby(blocks, key=describe):
        group = list(group)
        print(f"{group[0]:>8}..{group[-1]:<8} {status:<12} {owner}".rstrip())
    return 0


def cmd_check(args) -> int:
    image = CABImage(args.image)
    problems = image.check_consistency()
    if problems:
        for problem in problems:
            print(f"  ERROR: {problem}")
        print(f"{len(problems)} problem(s) found")
        return 1
    print("Image OK")
    return 0


COMMANDS = {
    "new": cmd_new,
    "format": cmd_format,
    "write": cmd_write,
    "take": cmd_take,
    "ls": cmd_ls,
    "info": cmd_info,
    "map": cmd_map,
    "check": cmd_check,
}


def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.cmd is None:
        parser.print_help()
        return 2

    try:
        return COMMANDS[args.cmd](args)
    except (CABError, ValueError, OSError) as e:
        logger.error(f"{args.cmd} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
