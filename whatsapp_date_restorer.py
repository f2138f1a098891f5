#!/usr/bin/env python3
"""
WhatsApp Date Restorer

Restores the original date of WhatsApp images by extracting it from the
file name (IMG-YYYYMMDD-WA####.jpg). The date is written into the EXIF
DateTimeOriginal/DateTimeDigitized tags and/or the file's last-modified
time. Processed images are saved into a new folder inside the input
directory, so the originals are never touched.
"""

import argparse
import os
import shutil
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import List, Optional

from date_restore_utils import (
    FILENAME_DATE_FORMAT,
    extract_date_token,
    format_display_date,
    read_modification_time,
    resolve_timestamp,
)
from jpeg_exif_utils import write_capture_date

OUTPUT_DIRECTORY_NAME = "wa-date-restore"

OPERATION_COPY = "copy"
OPERATION_EXIF_DATE = "exif_date"
OPERATION_MODIFICATION_TIME = "modification_time"


class InvalidDirectoryError(ValueError):
    """Exception raised when the input directory cannot be processed."""

    pass


class ProcessingOutcome:
    """Result of restoring the date of a single file."""

    SKIPPED = "skipped"
    NOTHING_REQUESTED = "nothing_requested"
    PARTIALLY_APPLIED = "partially_applied"
    APPLIED = "applied"

    def __init__(
        self,
        file_path: Path,
        status: str,
        reason: Optional[str] = None,
        resolved_timestamp: Optional[datetime] = None,
        target_path: Optional[Path] = None,
        applied_operations: Optional[List[str]] = None,
        failed_operations: Optional[List[str]] = None,
    ):
        self.file_path = file_path
        self.status = status
        self.reason = reason
        self.resolved_timestamp = resolved_timestamp
        self.target_path = target_path
        self.applied_operations = applied_operations or []
        self.failed_operations = failed_operations or []

    def __repr__(self) -> str:
        return (
            f"ProcessingOutcome({self.file_path.name!r}, {self.status!r}, "
            f"failed={self.failed_operations!r})"
        )


class WhatsAppDateRestorer:
    """Restores capture dates of WhatsApp images in a single directory."""

    def __init__(
        self,
        directory_path: str,
        overwrite_modification_time: bool = False,
        overwrite_exif_date: bool = False,
        in_place: bool = False,
        max_workers: int = 1,
    ):
        """
        Initialize the date restorer.

        Args:
            directory_path: Directory whose files should be processed
            overwrite_modification_time: Set the file's last-modified time
            overwrite_exif_date: Set EXIF DateTimeOriginal and DateTimeDigitized
            in_place: Modify the original files instead of copies (legacy mode)
            max_workers: Number of files processed concurrently
        """
        self.source_path = Path(directory_path)
        if not self.source_path.exists():
            raise InvalidDirectoryError("Directory not found!")
        if not self.source_path.is_dir():
            raise InvalidDirectoryError("Not a directory!")

        self.output_path = self.source_path / OUTPUT_DIRECTORY_NAME
        self.overwrite_modification_time = overwrite_modification_time
        self.overwrite_exif_date = overwrite_exif_date
        self.in_place = in_place
        self.max_workers = max(1, max_workers)

        self.errors: List[str] = []
        self._report_lock = Lock()

    def _record_error(self, message: str) -> None:
        with self._report_lock:
            self.errors.append(message)
            print(message, file=sys.stderr)

    def find_input_files(self) -> List[Path]:
        """
        List the files directly inside the input directory.

        Returns:
            Sorted list of file paths; directories are ignored

        Raises:
            InvalidDirectoryError: If the directory cannot be listed
        """
        try:
            return sorted(
                entry for entry in self.source_path.iterdir() if not entry.is_dir()
            )
        except OSError as e:
            raise InvalidDirectoryError(f"Could not read directory: {e}") from e

    def materialize_copy(self, file_path: Path) -> Optional[Path]:
        """
        Copy a source file into the output directory.

        Args:
            file_path: Path to the original file

        Returns:
            Path of the copy, or None if copying failed
        """
        try:
            self.output_path.mkdir(parents=True, exist_ok=True)
            copy_path = self.output_path / file_path.name
            shutil.copy2(file_path, copy_path)
            return copy_path
        except OSError as e:
            self._record_error(f"Could not copy {file_path.name}: {e}")
            return None

    def write_metadata_date(self, file_path: Path, timestamp: datetime) -> bool:
        """Write the EXIF capture dates, True if successful."""
        try:
            write_capture_date(file_path, timestamp)
            return True
        except Exception as e:
            self._record_error(
                f"Could not overwrite EXIF DateTimeOriginal of {file_path.name}: {e}"
            )
            return False

    def write_modification_time(self, file_path: Path, timestamp: datetime) -> bool:
        """Set access and modification time of a file, True if successful."""
        try:
            timestamp_value = timestamp.timestamp()
            os.utime(file_path, (timestamp_value, timestamp_value))
            return True
        except (OSError, OverflowError, ValueError) as e:
            self._record_error(
                f"Could not overwrite LastModifiedTime of {file_path.name}: {e}"
            )
            return False

    def process_single_file(self, file_path: Path) -> ProcessingOutcome:
        """
        Restore the date of a single file.

        Steps: extract token -> resolve timestamp -> copy -> EXIF -> mtime.
        Failures of one step are recorded and never raised.

        Args:
            file_path: Path to the original file

        Returns:
            ProcessingOutcome describing what happened
        """
        date_token = extract_date_token(file_path.name)
        if date_token is None:
            self._record_error(f"Could not find date in file name: {file_path.name}")
            return ProcessingOutcome(
                file_path, ProcessingOutcome.SKIPPED, reason="pattern mismatch"
            )

        modification_time = read_modification_time(file_path)
        resolved_timestamp = resolve_timestamp(date_token, modification_time)
        if resolved_timestamp is None:
            self._record_error(
                f"Could not parse date {date_token} - Not matching {FILENAME_DATE_FORMAT}"
            )
            return ProcessingOutcome(
                file_path, ProcessingOutcome.SKIPPED, reason="invalid date"
            )

        if not self.overwrite_modification_time and not self.overwrite_exif_date:
            self._report(file_path, " Nothing to process")
            return ProcessingOutcome(
                file_path,
                ProcessingOutcome.NOTHING_REQUESTED,
                resolved_timestamp=resolved_timestamp,
            )

        if self.in_place:
            target_path = file_path
        else:
            target_path = self.materialize_copy(file_path)
            if target_path is None:
                return ProcessingOutcome(
                    file_path,
                    ProcessingOutcome.SKIPPED,
                    reason="copy failed",
                    resolved_timestamp=resolved_timestamp,
                    failed_operations=[OPERATION_COPY],
                )

        applied_operations = []
        failed_operations = []
        display_date = format_display_date(resolved_timestamp)
        summary = ""

        # EXIF rewrite must precede the mtime write
        if self.overwrite_exif_date:
            if self.write_metadata_date(target_path, resolved_timestamp):
                applied_operations.append(OPERATION_EXIF_DATE)
                summary += f" [EXIF DateTimeOriginal -> {display_date}]"
            else:
                failed_operations.append(OPERATION_EXIF_DATE)

        if self.overwrite_modification_time:
            if self.write_modification_time(target_path, resolved_timestamp):
                applied_operations.append(OPERATION_MODIFICATION_TIME)
                summary += f" [LastModifiedTime -> {display_date}]"
            else:
                failed_operations.append(OPERATION_MODIFICATION_TIME)

        self._report(file_path, summary or " Failed")

        status = (
            ProcessingOutcome.PARTIALLY_APPLIED
            if failed_operations
            else ProcessingOutcome.APPLIED
        )
        return ProcessingOutcome(
            file_path,
            status,
            resolved_timestamp=resolved_timestamp,
            target_path=target_path,
            applied_operations=applied_operations,
            failed_operations=failed_operations,
        )

    def _report(self, file_path: Path, summary: str) -> None:
        with self._report_lock:
            print(f"Processing {file_path.name}:{summary}")

    def restore_dates(self) -> List[ProcessingOutcome]:
        """
        Process every file of the input directory.

        Returns:
            Outcomes in the same order as find_input_files()
        """
        input_files = self.find_input_files()

        if self.max_workers == 1:
            return [self.process_single_file(file_path) for file_path in input_files]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(self.process_single_file, input_files))


def main(argv: Optional[List[str]] = None):
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        prog="wa-date-restore",
        description=(
            "Restore the original date of WhatsApp images by extracting the date "
            "from the file name. The processed images will be saved into a new "
            f'folder called "{OUTPUT_DIRECTORY_NAME}" inside the input directory.'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -d /path/to/WhatsApp/Images -e        # Fix EXIF capture dates
  %(prog)s -d /path/to/WhatsApp/Images -e -l     # Fix EXIF and last-modified date
  %(prog)s -d /path/to/WhatsApp/Images           # Only report extracted dates

Please report issues at https://github.com/CookedApps/wa-date-restore
        """,
    )

    parser.add_argument(
        "-d",
        "--directory",
        required=True,
        metavar="path",
        help="Full path to the directory in which all files should be processed.",
    )
    parser.add_argument(
        "-l",
        "--lastModifiedDate",
        action="store_true",
        help='Overwrite the "Last Modified Date" with the extracted date.',
    )
    parser.add_argument(
        "-e",
        "--exifDate",
        action="store_true",
        help=(
            'Overwrite the EXIF "DateTimeOriginal" and "DateTimeDigitized" tag with '
            "the extracted date. (This is what you normally want to do.)"
        ),
    )
    parser.add_argument(
        "--in-place",
        action="store_true",
        help="Modify the original files instead of writing copies (legacy mode)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of files processed concurrently (default: 1)",
    )

    parsed_arguments = parser.parse_args(argv)

    try:
        restorer = WhatsAppDateRestorer(
            parsed_arguments.directory,
            overwrite_modification_time=parsed_arguments.lastModifiedDate,
            overwrite_exif_date=parsed_arguments.exifDate,
            in_place=parsed_arguments.in_place,
            max_workers=parsed_arguments.workers,
        )
        outcomes = restorer.restore_dates()
    except InvalidDirectoryError as error:
        print(f"Invalid path provided: {error}", file=sys.stderr)
        sys.exit(1)

    applied_count = sum(
        1 for outcome in outcomes if outcome.status == ProcessingOutcome.APPLIED
    )
    partial_count = sum(
        1
        for outcome in outcomes
        if outcome.status == ProcessingOutcome.PARTIALLY_APPLIED
    )
    skipped_count = sum(
        1 for outcome in outcomes if outcome.status == ProcessingOutcome.SKIPPED
    )

    print()
    print("=" * 60)
    print("SUMMARY:")
    print(f"Total files found: {len(outcomes)}")
    print(f"Files fully restored: {applied_count}")
    print(f"Files partially restored: {partial_count}")
    print(f"Files skipped: {skipped_count}")

    # Show errors in red if any
    if restorer.errors:
        print()
        print(f"\033[91mERRORS ENCOUNTERED ({len(restorer.errors)}):\033[0m")
        for error in restorer.errors:
            print(f"\033[91m  {error}\033[0m")


if __name__ == "__main__":
    main()
