#!/usr/bin/env python3
"""
JPEG EXIF Utilities

Lossless rewriting of the EXIF capture-date fields of JPEG files.

Only the APP1 Exif segment is replaced. Every other marker segment (JFIF,
XMP, ICC profiles, quantization tables) and the compressed scan data are
copied byte for byte. Inside the Exif segment the TIFF structure is patched
rather than re-encoded, so tags unknown to any EXIF codec, maker notes and
thumbnails keep their original bytes.
"""

import os
import shutil
import struct
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import piexif
from PIL import Image, UnidentifiedImageError

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

JPEG_SOI = b"\xff\xd8"
EXIF_HEADER = b"Exif\x00\x00"
APP0_MARKER = 0xE0
APP1_MARKER = 0xE1
SOS_MARKER = 0xDA
EOI_MARKER = 0xD9
STANDALONE_MARKERS = {0x01} | set(range(0xD0, 0xD8))
MAX_SEGMENT_LENGTH = 0xFFFF

TIFF_BIG_ENDIAN = b"MM\x00\x2a"
TIFF_LITTLE_ENDIAN = b"II\x2a\x00"
IFD_ENTRY_LENGTH = 12
ASCII_TYPE = 2
LONG_TYPE = 4
EXIF_IFD_POINTER_TAG = piexif.ImageIFD.ExifTag

# Big-endian TIFF header followed by an empty 0th IFD
EMPTY_TIFF = TIFF_BIG_ENDIAN + struct.pack(">LHL", 8, 0, 0)

CAPTURE_DATE_TAGS = {
    piexif.ExifIFD.DateTimeOriginal: "DateTimeOriginal",
    piexif.ExifIFD.DateTimeDigitized: "DateTimeDigitized",
}

# (marker, segment_start, payload_start, segment_end)
Segment = Tuple[int, int, int, int]

# (tag, value_type, count, raw 4-byte value field)
IfdEntry = Tuple[int, int, int, bytes]


class UnsupportedImageError(Exception):
    """Exception raised when a file's embedded metadata cannot be rewritten."""

    pass


def ensure_jpeg(file_path: Path) -> None:
    """
    Verify that a file is a JPEG image.

    JPEG files are recognized by their start-of-image marker, so no pixel
    count limits apply. Pillow only names the format of anything else.

    Raises:
        UnsupportedImageError: If the file is not an image or not a JPEG
    """
    with open(file_path, "rb") as f:
        if f.read(len(JPEG_SOI)) == JPEG_SOI:
            return

    try:
        with Image.open(file_path) as image:
            image_format = image.format
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise UnsupportedImageError(f"Not a recognized image: {e}") from e

    raise UnsupportedImageError(f"Unsupported image format: {image_format}")


def split_header_segments(data: bytes) -> List[Segment]:
    """
    Walk the JPEG marker segments preceding the first scan.

    Args:
        data: Complete JPEG file contents

    Returns:
        List of (marker, segment_start, payload_start, segment_end) tuples

    Raises:
        UnsupportedImageError: If the stream is not a well-formed JPEG
    """
    if data[0:2] != JPEG_SOI:
        raise UnsupportedImageError("Missing JPEG start-of-image marker")

    segments = []
    pos = 2
    while pos < len(data):
        if data[pos] != 0xFF:
            raise UnsupportedImageError(f"Corrupt JPEG marker at offset {pos}")

        segment_start = pos
        # Markers may be preceded by any number of 0xFF fill bytes
        while pos < len(data) and data[pos] == 0xFF:
            pos += 1
        if pos >= len(data):
            raise UnsupportedImageError("Truncated JPEG marker")

        marker = data[pos]
        pos += 1

        if marker in (SOS_MARKER, EOI_MARKER):
            break

        if marker in STANDALONE_MARKERS:
            segments.append((marker, segment_start, pos, pos))
            continue

        if pos + 2 > len(data):
            raise UnsupportedImageError("Truncated JPEG segment length")
        segment_length = struct.unpack(">H", data[pos : pos + 2])[0]
        if segment_length < 2:
            raise UnsupportedImageError(f"Invalid JPEG segment length at {pos}")

        segment_end = pos + segment_length
        if segment_end > len(data):
            raise UnsupportedImageError("Truncated JPEG segment")

        segments.append((marker, segment_start, pos + 2, segment_end))
        pos = segment_end

    return segments


def find_exif_segment(data: bytes, segments: List[Segment]) -> Optional[Segment]:
    """Return the first APP1 segment carrying EXIF data, if any."""
    for segment in segments:
        marker, _, payload_start, _ = segment
        if (
            marker == APP1_MARKER
            and data[payload_start : payload_start + len(EXIF_HEADER)] == EXIF_HEADER
        ):
            return segment
    return None


def build_exif_segment(exif_bytes: bytes) -> bytes:
    """Wrap an Exif header plus TIFF data into a complete APP1 marker segment."""
    if not exif_bytes.startswith(EXIF_HEADER):
        raise ValueError("Given data is not EXIF data")

    segment_length = len(exif_bytes) + 2
    if segment_length > MAX_SEGMENT_LENGTH:
        raise ValueError(f"EXIF data too large for a JPEG segment: {segment_length}")

    return b"\xff\xe1" + struct.pack(">H", segment_length) + exif_bytes


def splice_exif_segment(data: bytes, exif_segment: bytes) -> bytes:
    """
    Put an APP1 Exif segment into a JPEG stream.

    An existing Exif segment is replaced in place. Otherwise the new segment
    goes right after SOI and any leading APP0 (JFIF) segments.

    Args:
        data: Complete JPEG file contents
        exif_segment: Segment built by build_exif_segment()

    Returns:
        New JPEG file contents
    """
    segments = split_header_segments(data)

    existing_segment = find_exif_segment(data, segments)
    if existing_segment is not None:
        _, segment_start, _, segment_end = existing_segment
        return data[:segment_start] + exif_segment + data[segment_end:]

    insert_position = len(JPEG_SOI)
    for marker, _, _, segment_end in segments:
        if marker != APP0_MARKER:
            break
        insert_position = segment_end

    return data[:insert_position] + exif_segment + data[insert_position:]


def extract_tiff_data(data: bytes) -> bytes:
    """Return the TIFF structure of a JPEG's Exif segment, empty TIFF if none."""
    exif_segment = find_exif_segment(data, split_header_segments(data))
    if exif_segment is None:
        return EMPTY_TIFF

    _, _, payload_start, segment_end = exif_segment
    return data[payload_start + len(EXIF_HEADER) : segment_end]


def tiff_byte_order(tiff_data: bytes) -> str:
    """Return the struct byte order prefix of a TIFF structure."""
    if tiff_data[0:4] == TIFF_BIG_ENDIAN:
        return ">"
    if tiff_data[0:4] == TIFF_LITTLE_ENDIAN:
        return "<"
    raise UnsupportedImageError("Invalid TIFF header in EXIF data")


def read_ifd(
    tiff_data: bytes, ifd_offset: int, byte_order: str
) -> Tuple[List[IfdEntry], int]:
    """
    Read the entries of one image file directory.

    Args:
        tiff_data: TIFF structure from the Exif segment
        ifd_offset: Offset of the IFD from the start of the TIFF header
        byte_order: struct byte order prefix

    Returns:
        Tuple of (entries in file order, offset of the next IFD)
    """
    if ifd_offset < 8 or ifd_offset + 2 > len(tiff_data):
        raise UnsupportedImageError(f"IFD offset out of range: {ifd_offset}")

    entry_count = struct.unpack(byte_order + "H", tiff_data[ifd_offset : ifd_offset + 2])[0]
    entries_end = ifd_offset + 2 + entry_count * IFD_ENTRY_LENGTH
    if entries_end + 4 > len(tiff_data):
        raise UnsupportedImageError("Truncated IFD in EXIF data")

    entries = []
    for entry_start in range(ifd_offset + 2, entries_end, IFD_ENTRY_LENGTH):
        tag, value_type, count = struct.unpack(
            byte_order + "HHL", tiff_data[entry_start : entry_start + 8]
        )
        entries.append(
            (tag, value_type, count, tiff_data[entry_start + 8 : entry_start + 12])
        )

    next_ifd_offset = struct.unpack(
        byte_order + "L", tiff_data[entries_end : entries_end + 4]
    )[0]
    return entries, next_ifd_offset


def pack_ifd(entries: List[IfdEntry], next_ifd_offset: int, byte_order: str) -> bytes:
    """Serialize IFD entries, sorted by tag as TIFF requires."""
    packed = struct.pack(byte_order + "H", len(entries))
    for tag, value_type, count, value_field in sorted(entries, key=lambda e: e[0]):
        packed += struct.pack(byte_order + "HHL", tag, value_type, count) + value_field
    return packed + struct.pack(byte_order + "L", next_ifd_offset)


def _find_entry(entries: List[IfdEntry], tag: int) -> Optional[IfdEntry]:
    for entry in entries:
        if entry[0] == tag:
            return entry
    return None


def _append_aligned(tiff_data: bytearray, block: bytes) -> int:
    """Append a block on a word boundary and return its offset."""
    if len(tiff_data) % 2:
        tiff_data += b"\x00"
    block_offset = len(tiff_data)
    tiff_data += block
    return block_offset


def patch_capture_date(tiff_data: bytes, timestamp: datetime) -> bytes:
    """
    Set DateTimeOriginal and DateTimeDigitized in a TIFF structure.

    Existing date values are overwritten where they are stored. Missing
    tags get their values and a new Exif IFD appended to the end of the
    structure; the old IFD stays in place unreferenced. Offsets in TIFF are
    absolute, so nothing that was already stored moves.

    Args:
        tiff_data: TIFF structure from the Exif segment
        timestamp: Capture date to embed

    Returns:
        Patched TIFF structure
    """
    byte_order = tiff_byte_order(tiff_data)
    date_value = timestamp.strftime(EXIF_DATETIME_FORMAT).encode("ascii") + b"\x00"

    zeroth_offset = struct.unpack(byte_order + "L", tiff_data[4:8])[0]
    zeroth_entries, zeroth_next_offset = read_ifd(tiff_data, zeroth_offset, byte_order)

    pointer_entry = _find_entry(zeroth_entries, EXIF_IFD_POINTER_TAG)
    if pointer_entry is None:
        exif_entries, exif_next_offset = [], 0
    else:
        exif_offset = struct.unpack(byte_order + "L", pointer_entry[3])[0]
        exif_entries, exif_next_offset = read_ifd(tiff_data, exif_offset, byte_order)

    patched = bytearray(tiff_data)
    missing_tags = []
    for tag_id in CAPTURE_DATE_TAGS:
        entry = _find_entry(exif_entries, tag_id)
        if (
            entry is not None
            and entry[1] == ASCII_TYPE
            and entry[2] == len(date_value)
        ):
            value_offset = struct.unpack(byte_order + "L", entry[3])[0]
            if value_offset + len(date_value) <= len(patched):
                patched[value_offset : value_offset + len(date_value)] = date_value
                continue
        missing_tags.append(tag_id)

    if not missing_tags:
        return bytes(patched)

    new_entries = [entry for entry in exif_entries if entry[0] not in missing_tags]
    for tag_id in missing_tags:
        value_offset = _append_aligned(patched, date_value)
        new_entries.append(
            (
                tag_id,
                ASCII_TYPE,
                len(date_value),
                struct.pack(byte_order + "L", value_offset),
            )
        )

    new_exif_offset = _append_aligned(
        patched, pack_ifd(new_entries, exif_next_offset, byte_order)
    )
    pointer_field = struct.pack(byte_order + "L", new_exif_offset)

    if pointer_entry is not None:
        pointer_position = (
            zeroth_offset
            + 2
            + zeroth_entries.index(pointer_entry) * IFD_ENTRY_LENGTH
            + 8
        )
        patched[pointer_position : pointer_position + 4] = pointer_field
    else:
        zeroth_entries.append((EXIF_IFD_POINTER_TAG, LONG_TYPE, 1, pointer_field))
        new_zeroth_offset = _append_aligned(
            patched, pack_ifd(zeroth_entries, zeroth_next_offset, byte_order)
        )
        patched[4:8] = struct.pack(byte_order + "L", new_zeroth_offset)

    return bytes(patched)


def load_exif_dict(data: bytes) -> dict:
    """Decode the EXIF structure of a JPEG stream with piexif."""
    return piexif.load(EXIF_HEADER + extract_tiff_data(data))


def write_capture_date(file_path: Path, timestamp: datetime) -> None:
    """
    Rewrite the EXIF capture dates of a JPEG file in place.

    The file's access and modification times are left as they were.

    Args:
        file_path: Path to the JPEG file (always a copy in normal mode)
        timestamp: Capture date to embed

    Raises:
        UnsupportedImageError: If the file is not a writable JPEG
        OSError: If reading or writing the file fails
    """
    file_path = Path(file_path)
    ensure_jpeg(file_path)

    original_stat = file_path.stat()
    data = file_path.read_bytes()

    try:
        patched_tiff = patch_capture_date(extract_tiff_data(data), timestamp)
        exif_segment = build_exif_segment(EXIF_HEADER + patched_tiff)
        new_data = splice_exif_segment(data, exif_segment)
        written_dates = read_capture_dates_from_bytes(new_data)
    except (ValueError, IndexError, KeyError, struct.error) as e:
        raise UnsupportedImageError(f"Could not rebuild EXIF data: {e}") from e

    expected_date = timestamp.replace(microsecond=0)
    if any(value != expected_date for value in written_dates.values()):
        raise UnsupportedImageError("Rewritten EXIF data does not decode to the new date")

    temp_path = file_path.with_name(f".{file_path.name}.tmp")
    try:
        temp_path.write_bytes(new_data)
        shutil.copymode(file_path, temp_path)
        os.replace(temp_path, file_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()

    os.utime(file_path, ns=(original_stat.st_atime_ns, original_stat.st_mtime_ns))


def read_capture_dates_from_bytes(data: bytes) -> Dict[str, Optional[datetime]]:
    """Decode DateTimeOriginal/DateTimeDigitized from JPEG file contents."""
    exif_dict = load_exif_dict(data)
    capture_dates = {}

    for tag_id, field_name in CAPTURE_DATE_TAGS.items():
        raw_value = exif_dict["Exif"].get(tag_id)
        try:
            capture_dates[field_name] = datetime.strptime(
                raw_value.decode("ascii"), EXIF_DATETIME_FORMAT
            )
        except (AttributeError, UnicodeDecodeError, ValueError):
            capture_dates[field_name] = None

    return capture_dates


def read_capture_dates(file_path: Path) -> Dict[str, Optional[datetime]]:
    """
    Read the EXIF capture dates of a JPEG file.

    Returns:
        Dictionary mapping 'DateTimeOriginal'/'DateTimeDigitized' to datetimes
    """
    return read_capture_dates_from_bytes(Path(file_path).read_bytes())
