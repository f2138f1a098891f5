#!/usr/bin/env python3
"""
Tests for the date_restore_utils module.
"""

import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from date_restore_utils import (
    extract_date_token,
    format_display_date,
    parse_date_token,
    read_modification_time,
    resolve_timestamp,
)


class TestFilenameDateExtraction:
    """Test suite for extracting date tokens from file names."""

    @pytest.mark.parametrize(
        "file_name, expected_token",
        [
            ("IMG-20190105-WA0003.jpg", "20190105"),
            ("IMG-20200615-WA0001.jpeg", "20200615"),
            ("IMG-20181231-WA12345.jpg", "20181231"),
            ("IMG-20190105-WA0003 (1).jpg", "20190105"),
            ("IMG-20191399-WA0001.jpg", "20191399"),
        ],
    )
    def test_extract_date_token_from_whatsapp_names(self, file_name, expected_token):
        """Extract date token returns the eight digits of WhatsApp image names."""
        # Act & Assert
        assert extract_date_token(file_name) == expected_token

    @pytest.mark.parametrize(
        "file_name",
        [
            "random.jpg",
            "IMG_20190105_WA0003.jpg",
            "IMG-2019010-WA0003.jpg",
            "IMG-201901055-WA0003.jpg",
            "IMG-20190105-WA",
            "IMG-20190105-XX0003.jpg",
            "VID-20190105-WA0003.mp4",
            "",
        ],
    )
    def test_extract_date_token_rejects_other_names(self, file_name):
        """Extract date token returns None for names not matching the pattern."""
        # Act & Assert
        assert extract_date_token(file_name) is None


class TestDateTokenParsing:
    """Test suite for parsing date tokens."""

    def test_parse_valid_token(self):
        """Parse valid token returns midnight of that date."""
        # Act
        parsed_date = parse_date_token("20190105")

        # Assert
        assert parsed_date == datetime(2019, 1, 5, 0, 0, 0)

    @pytest.mark.parametrize(
        "date_token", ["20191301", "20190230", "20190100", "2019010a", "201901", ""]
    )
    def test_parse_invalid_token_returns_none(self, date_token):
        """Parse invalid calendar dates returns None."""
        # Act & Assert
        assert parse_date_token(date_token) is None


class TestTimestampResolution:
    """Test suite for reconciling file name dates with modification times."""

    def test_resolve_without_modification_time_uses_midday(self):
        """Resolve falls back to midday of the token's date."""
        # Act
        resolved = resolve_timestamp("20190105")

        # Assert
        assert resolved == datetime(2019, 1, 5, 12, 0, 0)

    def test_resolve_with_mismatching_modification_time_uses_midday(self):
        """Resolve ignores a modification time on another calendar date."""
        # Arrange
        modification_time = datetime(2021, 1, 1, 8, 15, 0)

        # Act
        resolved = resolve_timestamp("20190105", modification_time)

        # Assert
        assert resolved == datetime(2019, 1, 5, 12, 0, 0)

    def test_resolve_with_matching_modification_time_keeps_it(self):
        """Resolve keeps the exact modification time when the date matches."""
        # Arrange
        modification_time = datetime(2019, 1, 5, 23, 47, 11, 250000)

        # Act
        resolved = resolve_timestamp("20190105", modification_time)

        # Assert
        assert resolved is modification_time

    def test_resolve_is_idempotent(self):
        """Resolve applied to its own output returns the same timestamp."""
        # Arrange
        first_resolution = resolve_timestamp("20200615", datetime(2021, 1, 1))

        # Act
        second_resolution = resolve_timestamp("20200615", first_resolution)

        # Assert
        assert second_resolution == first_resolution

    def test_resolve_invalid_token_returns_none(self):
        """Resolve returns None for tokens that are no calendar date."""
        # Act & Assert
        assert resolve_timestamp("20191301", datetime(2019, 1, 5)) is None

    def test_format_display_date(self):
        """Format display date uses day.month.year order and names the time zone."""
        # Arrange
        timestamp = datetime(2020, 6, 15, 12, 0, 0)

        # Act
        display_date = format_display_date(timestamp)

        # Assert
        assert display_date == "15.06.2020 12:00:00 " + timestamp.astimezone().tzname()


class TestModificationTimeReading:
    """Test suite for reading file modification times."""

    def setup_method(self):
        """Set up test environment before each test."""
        self.test_directory = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Clean up after each test."""
        shutil.rmtree(self.test_directory)

    def test_read_modification_time_of_existing_file(self):
        """Read modification time returns the file's mtime as datetime."""
        # Arrange
        test_file = self.test_directory / "IMG-20200615-WA0001.jpg"
        test_file.write_bytes(b"content")
        target_datetime = datetime(2021, 1, 1, 9, 30, 0)
        os.utime(test_file, (target_datetime.timestamp(), target_datetime.timestamp()))

        # Act
        modification_time = read_modification_time(test_file)

        # Assert
        assert abs((modification_time - target_datetime).total_seconds()) < 1

    def test_read_modification_time_of_missing_file(self):
        """Read modification time returns None when the file is missing."""
        # Act & Assert
        assert read_modification_time(self.test_directory / "missing.jpg") is None
