"""
Tests for Layer 3 - MRZ character table, checksums, parsing and scoring.
"""
import json

import numpy as np
import pytest
import pytesseract

from error_handlers import (
    InvalidCharacterError,
    MalformedLayoutError,
    MalformedNameError,
    OCREngineError,
    ParseError,
)
from layer3_mrz import checksum, scorer
from layer3_mrz.characters import OCR_WHITELIST, value_of
from layer3_mrz.extractor import MRZExtractor
from layer3_mrz.parser import MRZLineParser, format_mrz_date
from layer3_mrz.saver import ImageSaver


def replace_at(line, index, char):
    return line[:index] + char + line[index + 1:]


class TestCharacterValues:
    """Test MRZ character value table."""

    def test_digits(self):
        for d in "0123456789":
            assert value_of(d) == int(d)

    def test_letters(self):
        assert value_of("A") == 10
        assert value_of("L") == 21
        assert value_of("Z") == 35

    def test_filler_is_zero(self):
        assert value_of("<") == 0

    @pytest.mark.parametrize("char", ["a", " ", "#", "«", ""])
    def test_invalid_character(self, char):
        with pytest.raises(InvalidCharacterError) as exc_info:
            value_of(char)
        assert exc_info.value.error_code == "INVALID_CHARACTER"


class TestChecksum:
    """Test ICAO weighted check digits."""

    def test_reference_field(self):
        """A=10*7 + B=11*3 + 2*1 + 1*7 + 3*3 + 4*1 = 125."""
        assert checksum.compute_check_digit("AB2134<<<") == 5

    @pytest.mark.parametrize("field, expected", [
        ("L898902C3", 6),
        ("740812", 2),
        ("120415", 9),
        ("ZE184226B<<<<<", 1),
    ])
    def test_specimen_fields(self, field, expected):
        assert checksum.compute_check_digit(field) == expected

    def test_weights_cycle(self):
        # 1*7 + 1*3 + 1*1 + 1*7 = 18
        assert checksum.compute_check_digit("1111") == 8

    def test_empty_field(self):
        assert checksum.compute_check_digit("") == 0

    def test_validate_match(self):
        assert checksum.validate("AB2134<<<", "5") is True

    def test_validate_mismatch(self):
        assert checksum.validate("AB2134<<<", "4") is False

    def test_filler_check_on_filler_field(self):
        """Empty optional field with '<' check digit is valid."""
        assert checksum.validate("<" * 14, "<") is True

    def test_filler_check_on_filled_field(self):
        assert checksum.validate("ZE184226B<<<<<", "<") is False

    def test_zero_check_on_filler_field(self):
        assert checksum.validate("<" * 14, "0") is True

    def test_invalid_character_counts_as_failure(self):
        assert checksum.validate("l898902C3", "6") is False

    def test_non_digit_check_character(self):
        assert checksum.validate("L898902C3", "O") is False


class TestMRZLineParser:
    """Test TD3 parsing."""

    @pytest.fixture
    def parser(self):
        return MRZLineParser()

    def test_specimen_round_trip(self, parser, sample_mrz_text):
        record = parser.parse(sample_mrz_text)

        assert record.document_type == "P"
        assert record.issuing_state == "UTO"
        assert record.surname == "ERIKSSON"
        assert record.given_names == "ANNA MARIA"
        assert record.document_number == "L898902C3"
        assert record.nationality == "UTO"
        assert record.birth_date == "740812"
        assert record.sex == "F"
        assert record.expiry_date == "120415"
        assert record.personal_number == "ZE184226B"
        assert all(record.checks.values())
        assert scorer.score(record) == scorer.MAX_SCORE

    def test_filler_personal_number(self, parser, filler_personal_mrz_td3):
        record = parser.parse("\n".join(filler_personal_mrz_td3))

        assert record.personal_number is None
        assert record.personal_number_valid is True
        assert record.composite_valid is True
        assert scorer.score(record) == 5

    def test_document_number_misread(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        record = parser.parse(f"{line1}\n{replace_at(line2, 0, 'M')}")

        assert record.document_number_valid is False
        assert record.composite_valid is False
        assert record.birth_date_valid is True
        assert scorer.score(record) == 3

    def test_birth_date_misread(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        record = parser.parse(f"{line1}\n{replace_at(line2, 13, '8')}")

        assert record.failed_checks == ["birth_date", "composite"]
        assert scorer.score(record) == 3

    def test_lowercase_in_checked_field(self, parser, sample_mrz_td3):
        """Whitelisted but non-MRZ characters fail the checksum, not the parse."""
        line1, line2 = sample_mrz_td3
        record = parser.parse(f"{line1}\n{replace_at(line2, 0, 'l')}")

        assert record.document_number_valid is False
        assert record.composite_valid is False

    def test_ignores_page_text_and_spaces(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        text = (
            "PASSPORT\n"
            "UTOPIA\n"
            f"{line1[:20]} {line1[20:]}\n"
            f"  {line2}  \n"
        )
        record = parser.parse(text)
        assert record.lines == (line1, line2)

    def test_uses_last_two_candidates(self, parser, sample_mrz_td3):
        noise = "X" * 44
        record = parser.parse("\n".join([noise] + sample_mrz_td3))
        assert record.surname == "ERIKSSON"

    def test_single_88_character_line(self, parser, sample_mrz_td3):
        record = parser.parse("".join(sample_mrz_td3))
        assert scorer.score(record) == 5

    def test_composite_covers_field_pairs(self, parser, sample_mrz_td3):
        """Nationality and sex are outside the composite check."""
        line1, line2 = sample_mrz_td3
        line2 = replace_at(line2, 10, "X")
        line2 = replace_at(line2, 20, "M")
        record = parser.parse(f"{line1}\n{line2}")
        assert all(record.checks.values())

    @pytest.mark.parametrize("text", [
        "",
        "P<UTOERIKSSON<<ANNA<MARIA",
        "P<UTOERIKSSON<<ANNA<MARIA<<<<<<<<<<<<<<<<<<<\n",
        "P<UTOERIKSSON<<ANNA<MARIA<<<<<<<<<<<<<<<<<<<\nL898902C36UTO7408122F1204159ZE184226B<<<<<",
    ])
    def test_short_text_is_malformed(self, parser, text):
        with pytest.raises(MalformedLayoutError):
            parser.parse(text)

    def test_long_line_is_malformed(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        with pytest.raises(MalformedLayoutError):
            parser.parse(f"{line1}<<\n{line2}")

    def test_non_whitelist_character_is_malformed(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        with pytest.raises(MalformedLayoutError) as exc_info:
            parser.parse(f"{replace_at(line1, 30, '*')}\n{line2}")
        assert exc_info.value.details["characters"] == ["*"]

    def test_non_whitelist_character_in_checked_field(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        record = parser.parse(f"{line1}\n{replace_at(line2, 2, '*')}")

        assert record.document_number_valid is False
        assert record.composite_valid is False
        assert record.failed_checks == ["document_number", "composite"]
        assert scorer.score(record) == 3

    def test_non_whitelist_check_digit_fails_checksum(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        record = parser.parse(f"{line1}\n{replace_at(line2, 19, '*')}")

        assert record.birth_date_valid is False
        assert record.document_number_valid is True

    def test_non_whitelist_character_in_nationality_is_malformed(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        with pytest.raises(MalformedLayoutError):
            parser.parse(f"{line1}\n{replace_at(line2, 11, '*')}")

    def test_name_without_separator(self, parser, sample_mrz_td3):
        line1, line2 = sample_mrz_td3
        line1 = "P<UTO" + "ERIKSSON<ANNA<MARIA".ljust(39, "X")
        with pytest.raises(MalformedNameError):
            parser.parse(f"{line1}\n{line2}")

    def test_parse_errors_share_base(self):
        assert issubclass(MalformedLayoutError, ParseError)
        assert issubclass(MalformedNameError, ParseError)

    def test_record_is_immutable(self, parser, sample_mrz_text):
        record = parser.parse(sample_mrz_text)
        with pytest.raises(Exception):
            record.surname = "OTHER"

    def test_to_dict(self, parser, sample_mrz_text):
        data = parser.parse(sample_mrz_text).to_dict()

        assert data["birth_date"] == "1974-08-12"
        assert data["expiry_date"] == "2012-04-15"
        assert data["checks"]["composite"] is True
        json.dumps(data)


class TestDateFormatting:
    """Test MRZ date formatting."""

    def test_century_pivot(self):
        assert format_mrz_date("500101") == "2050-01-01"
        assert format_mrz_date("510101") == "1951-01-01"

    def test_unreadable_date_unchanged(self):
        assert format_mrz_date("74O812") == "74O812"
        assert format_mrz_date("<<<<<<") == "<<<<<<"


class TestQualityScorer:
    """Test threshold comparison."""

    def test_equal_score_meets_threshold(self):
        assert scorer.meets_threshold(4, 4) is True

    def test_lower_score_fails_threshold(self):
        assert scorer.meets_threshold(3, 4) is False

    def test_fractional_threshold(self):
        assert scorer.meets_threshold(5, 4.5) is True


class TestMRZExtractor:
    """Test the Tesseract adapter without a tesseract binary."""

    @pytest.fixture
    def image(self):
        return np.full((60, 500), 255, dtype=np.uint8)

    def test_config_restricts_alphabet(self):
        config = MRZExtractor.build_config()
        assert f"tessedit_char_whitelist={OCR_WHITELIST}" in config
        assert "x_ht_quality_check=0" in config

    def test_recognize_returns_stripped_text(self, monkeypatch, image, sample_mrz_text):
        calls = {}

        def fake_image_to_string(img, lang=None, config=None):
            calls["config"] = config
            return "\n" + sample_mrz_text + "\n\x0c"

        monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)
        extractor = MRZExtractor()

        assert extractor.recognize(image) == sample_mrz_text.strip()
        assert calls["config"] == extractor.config

    def test_tesseract_error_returns_empty(self, monkeypatch, image):
        def failing(img, lang=None, config=None):
            raise pytesseract.TesseractError(1, "bad image")

        monkeypatch.setattr(pytesseract, "image_to_string", failing)
        assert MRZExtractor().recognize(image) == ""

    def test_missing_tesseract_raises(self, monkeypatch, image):
        def missing(img, lang=None, config=None):
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "image_to_string", missing)
        with pytest.raises(OCREngineError):
            MRZExtractor().recognize(image)


class TestImageSaver:
    """Test debug attempt saving."""

    def test_save_attempt(self, tmp_path):
        saver = ImageSaver(base_dir=str(tmp_path / "attempts"))
        image = np.zeros((20, 40), dtype=np.uint8)

        paths = saver.save_attempt(3, image, {"text": "ABC", "score": 2})

        assert paths["image_path"].endswith(".png")
        with open(paths["json_path"], encoding="utf-8") as f:
            data = json.load(f)
        assert data["attempt"] == 3
        assert data["score"] == 2
        assert data["image_path"] == paths["image_path"]
