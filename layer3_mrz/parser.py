"""
Layer 3 - MRZ Extraction
Component: TD3 line parser
Responsibility: Slice recognized OCR text into passport MRZ fields and
record the outcome of every check digit
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from error_handlers import MalformedLayoutError, MalformedNameError

from . import checksum
from .characters import FILLER, OCR_WHITELIST

logger = logging.getLogger(__name__)

LINE_LENGTH = 44
LINE_COUNT = 2
# OCR lines shorter than this are treated as page text, not MRZ
CANDIDATE_MIN_LENGTH = 41
NAME_SEPARATOR = FILLER * 2


@dataclass(frozen=True)
class MRZField:
    """Fixed-width slice of one TD3 line"""
    name: str
    line: int
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length

    def read(self, lines: Tuple[str, str]) -> str:
        return lines[self.line][self.start:self.end]


# Line 1
DOCUMENT_TYPE = MRZField("document_type", 0, 0, 2)
ISSUING_STATE = MRZField("issuing_state", 0, 2, 3)
NAME = MRZField("name", 0, 5, 39)

# Line 2
DOCUMENT_NUMBER = MRZField("document_number", 1, 0, 9)
DOCUMENT_NUMBER_CHECK = MRZField("document_number_check", 1, 9, 1)
NATIONALITY = MRZField("nationality", 1, 10, 3)
BIRTH_DATE = MRZField("birth_date", 1, 13, 6)
BIRTH_DATE_CHECK = MRZField("birth_date_check", 1, 19, 1)
SEX = MRZField("sex", 1, 20, 1)
EXPIRY_DATE = MRZField("expiry_date", 1, 21, 6)
EXPIRY_DATE_CHECK = MRZField("expiry_date_check", 1, 27, 1)
PERSONAL_NUMBER = MRZField("personal_number", 1, 28, 14)
PERSONAL_NUMBER_CHECK = MRZField("personal_number_check", 1, 42, 1)
COMPOSITE_CHECK = MRZField("composite_check", 1, 43, 1)

# Composite check digit covers these field+check pairs, in this order
COMPOSITE_FIELDS = (
    (DOCUMENT_NUMBER, DOCUMENT_NUMBER_CHECK),
    (BIRTH_DATE, BIRTH_DATE_CHECK),
    (EXPIRY_DATE, EXPIRY_DATE_CHECK),
    (PERSONAL_NUMBER, PERSONAL_NUMBER_CHECK),
)

# Positions covered by a check digit; bad characters here fail that checksum
CHECKED_FIELDS = tuple(
    part for pair in COMPOSITE_FIELDS for part in pair
) + (COMPOSITE_CHECK,)


def _is_checked(line: int, position: int) -> bool:
    return any(
        field.line == line and field.start <= position < field.end
        for field in CHECKED_FIELDS
    )


def _clean(value: str) -> str:
    """Replace fillers with spaces and collapse the padding"""
    return " ".join(value.replace(FILLER, " ").split())


def format_mrz_date(date_str: str) -> str:
    """
    Format an MRZ date (YYMMDD) as YYYY-MM-DD.

    00-50 -> 2000-2050, 51-99 -> 1951-1999. Anything that is not six digits
    is returned unchanged.
    """
    if len(date_str) != 6 or not date_str.isdigit():
        return date_str

    year = int(date_str[0:2])
    full_year = 2000 + year if year <= 50 else 1900 + year
    return f"{full_year}-{date_str[2:4]}-{date_str[4:6]}"


@dataclass(frozen=True)
class MRZRecord:
    """Structured TD3 record plus the outcome of its five check digits"""
    document_type: str
    issuing_state: str
    surname: str
    given_names: str
    document_number: str
    nationality: str
    birth_date: str
    sex: str
    expiry_date: str
    personal_number: Optional[str]
    document_number_valid: bool
    birth_date_valid: bool
    expiry_date_valid: bool
    personal_number_valid: bool
    composite_valid: bool
    lines: Tuple[str, str] = ("", "")

    @property
    def checks(self) -> Dict[str, bool]:
        return {
            "document_number": self.document_number_valid,
            "birth_date": self.birth_date_valid,
            "expiry_date": self.expiry_date_valid,
            "personal_number": self.personal_number_valid,
            "composite": self.composite_valid,
        }

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, ok in self.checks.items() if not ok]

    def to_dict(self) -> Dict:
        """Convert to dictionary for API response."""
        return {
            "document_type": self.document_type,
            "issuing_state": self.issuing_state,
            "surname": self.surname,
            "given_names": self.given_names,
            "document_number": self.document_number,
            "nationality": self.nationality,
            "birth_date": format_mrz_date(self.birth_date),
            "sex": self.sex,
            "expiry_date": format_mrz_date(self.expiry_date),
            "personal_number": self.personal_number,
            "checks": self.checks,
            "mrz_lines": list(self.lines),
        }


class MRZLineParser:
    """
    Parses recognized text from the OCR engine into an MRZRecord.

    Failing check digits never abort parsing; they are recorded on the
    record so the caller can score confidence. Only structural problems
    raise a ParseError.
    """

    def parse(self, raw_text: str) -> MRZRecord:
        """
        Parse raw OCR text into a TD3 record

        Args:
            raw_text: Text returned by the OCR engine for one frame

        Returns:
            MRZRecord: Parsed record with checksum outcomes

        Raises:
            MalformedLayoutError: If the text is not two 44-character lines
            MalformedNameError: If the name field has no '<<' separator
        """
        lines = self.split_lines(raw_text)
        logger.debug(f"MRZ line 1: {lines[0]}")
        logger.debug(f"MRZ line 2: {lines[1]}")

        surname, given_names = self._split_name(NAME.read(lines))

        document_number = DOCUMENT_NUMBER.read(lines)
        birth_date = BIRTH_DATE.read(lines)
        expiry_date = EXPIRY_DATE.read(lines)
        personal_number = PERSONAL_NUMBER.read(lines)

        composite = "".join(
            field.read(lines) + check.read(lines) for field, check in COMPOSITE_FIELDS
        )

        record = MRZRecord(
            document_type=_clean(DOCUMENT_TYPE.read(lines)),
            issuing_state=_clean(ISSUING_STATE.read(lines)),
            surname=surname,
            given_names=given_names,
            document_number=_clean(document_number),
            nationality=_clean(NATIONALITY.read(lines)),
            birth_date=birth_date,
            sex=_clean(SEX.read(lines)),
            expiry_date=expiry_date,
            personal_number=_clean(personal_number) or None,
            document_number_valid=checksum.validate(
                document_number, DOCUMENT_NUMBER_CHECK.read(lines)),
            birth_date_valid=checksum.validate(
                birth_date, BIRTH_DATE_CHECK.read(lines)),
            expiry_date_valid=checksum.validate(
                expiry_date, EXPIRY_DATE_CHECK.read(lines)),
            personal_number_valid=checksum.validate(
                personal_number, PERSONAL_NUMBER_CHECK.read(lines)),
            composite_valid=checksum.validate(
                composite, COMPOSITE_CHECK.read(lines)),
            lines=lines,
        )

        if record.failed_checks:
            logger.debug(f"Failed checks: {record.failed_checks}")
        return record

    def split_lines(self, raw_text: str) -> Tuple[str, str]:
        """
        Normalize OCR text into the two TD3 lines.

        Whitespace inside lines is dropped and short lines are ignored. The
        MRZ sits at the bottom of the data page, so the last two candidates
        are used. A single 88-character candidate is split in half.
        """
        if not raw_text:
            raise MalformedLayoutError("no text recognized")

        candidates = []
        for line in raw_text.splitlines():
            compact = "".join(line.split())
            if len(compact) >= CANDIDATE_MIN_LENGTH:
                candidates.append(compact)

        if len(candidates) == 1 and len(candidates[0]) == LINE_LENGTH * LINE_COUNT:
            joined = candidates[0]
            candidates = [joined[:LINE_LENGTH], joined[LINE_LENGTH:]]

        if len(candidates) < LINE_COUNT:
            raise MalformedLayoutError(
                f"expected {LINE_COUNT} MRZ lines, found {len(candidates)}",
                details={"candidates": candidates},
            )

        lines = tuple(candidates[-LINE_COUNT:])
        lengths = [len(line) for line in lines]
        if any(length != LINE_LENGTH for length in lengths):
            raise MalformedLayoutError(
                f"expected {LINE_LENGTH}-character lines, got {lengths}",
                details={"lengths": lengths},
            )

        for index, line in enumerate(lines):
            bad = sorted({
                c for position, c in enumerate(line)
                if c not in OCR_WHITELIST and not _is_checked(index, position)
            })
            if bad:
                raise MalformedLayoutError(
                    f"characters outside the OCR whitelist: {''.join(bad)}",
                    details={"characters": bad},
                )

        return lines

    @staticmethod
    def _split_name(name_field: str) -> Tuple[str, str]:
        """Split the name field into (surname, given names)"""
        if NAME_SEPARATOR not in name_field:
            raise MalformedNameError(name_field)

        surname, _, given = name_field.partition(NAME_SEPARATOR)
        return _clean(surname), _clean(given)
