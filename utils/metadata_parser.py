import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, TextIO, Tuple

from coretypes import ParseResult
from utils.logging import MalformedFilamentError, SourceUnreadableError

COMMENT_MARKER = ';'
FILAMENT_USED_PREFIX = 'filament used [g]'
PRINTER_MODEL_PREFIX = 'printer_model'
EXTRUDER_COLOUR_PREFIX = 'extruder_colour'

GRAMS_PRECISION = Decimal('0.01')
MAX_GRAMS_EXPONENT = 308

@dataclass(frozen=True)
class MetadataLine:
    key_text: str # Lower-cased, used for prefix matching
    raw_text: str # Original casing, for values that must be kept verbatim


def normalize_line(line: str) -> Optional[MetadataLine]:
    """
    Strips the line ending and the gcode comment marker. Returns None for
    lines with nothing to match.
    """
    line = line.rstrip('\r\n')
    if not line or line == COMMENT_MARKER:
        return None

    # Text gcode writes '; key = value', binary gcode metadata has no marker
    if line[0] == COMMENT_MARKER:
        line = line[2:]

    return MetadataLine(key_text=line.lower(), raw_text=line)


def iter_metadata_lines(fh: Iterable[str]) -> Iterator[MetadataLine]:
    for line in fh:
        normalized = normalize_line(line)
        if normalized:
            yield normalized


def split_value(text: str) -> str:
    """ Returns the part after '=' in a 'key = value' line. """
    parts = text.strip().split('=')
    if len(parts) != 2:
        raise ValueError(f"expected one '=' in '{text.strip()}', found {len(parts) - 1}")
    return parts[1].strip()


def trim_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]
    return value.strip()


def parse_grams(token: str) -> float:
    # Going through Decimal keeps 12.345 from rounding down as 1234.4999... would
    try:
        value = Decimal(token.strip())
        # Anything past this is out of range as a float
        if not value.is_finite() or value.adjusted() > MAX_GRAMS_EXPONENT:
            raise InvalidOperation()

        # Enough digits for the integer part plus two decimals
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, value.adjusted() + 3)
            grams = float(value.quantize(GRAMS_PRECISION, rounding=ROUND_HALF_UP))
        if math.isinf(grams):
            raise InvalidOperation()
    except InvalidOperation:
        raise MalformedFilamentError(f"Filament used extraction failed, invalid weight '{token.strip()}'")
    return grams


#
# Field extractors
#
ExtractorFunc = Callable[[MetadataLine, ParseResult, logging.Logger], None]

def extract_filament_used(line: MetadataLine, result: ParseResult, logger: logging.Logger) -> None:
    try:
        value = split_value(line.key_text)
    except ValueError as e:
        raise MalformedFilamentError(f"Error parsing filament used [g]: {e}")

    if ',' in value:
        tokens = trim_quotes(value).split(',')
    else:
        tokens = [trim_quotes(value)]

    weights = [parse_grams(token) for token in tokens]
    result.filament_used_grams.extend(weights)


def extract_printer_model(line: MetadataLine, result: ParseResult, logger: logging.Logger) -> None:
    try:
        value = split_value(line.key_text)
    except ValueError as e:
        logger.warning(f"Printer model extraction failed, {e}")
        return

    result.printer_model = value.upper()


def extract_extruder_colour(line: MetadataLine, result: ParseResult, logger: logging.Logger) -> None:
    try:
        value = split_value(line.raw_text)
    except ValueError as e:
        logger.warning(f"Extruder colour extraction failed, {e}")
        return

    colour = trim_quotes(value)
    logger.debug(f"color: {colour}")
    if colour:
        result.extruder_colours.append(colour)


EXTRACTORS: List[Tuple[str, ExtractorFunc]] = [
    (FILAMENT_USED_PREFIX, extract_filament_used),
    (PRINTER_MODEL_PREFIX, extract_printer_model),
    (EXTRUDER_COLOUR_PREFIX, extract_extruder_colour),
]


#
# Scanning
#
def scan_lines(lines: Iterable[str], logger: logging.Logger, stop_early: bool = False) -> ParseResult:
    """
    Runs every line past the field extractors and returns what they found.

    By default the whole file is read, so fields that show up late or more than
    once are still picked up. stop_early ends the scan as soon as the result
    looks complete, which saves reading the toolpath of large files but can
    miss colour lines that come after the filament line.

    Raises MalformedFilamentError if a filament line can't be parsed.
    """
    result = ParseResult()

    for line in iter_metadata_lines(lines):
        if line.key_text.startswith('filament'):
            logger.debug(line.raw_text)

        for prefix, extract in EXTRACTORS:
            if line.key_text.startswith(prefix):
                extract(line, result, logger)

        if stop_early and result.is_complete():
            logger.debug("All metadata found, stopping scan early")
            break

    return result


def scan_file(gcode_path: Path, logger: logging.Logger, stop_early: bool = False) -> ParseResult:
    try:
        fh: TextIO = open(gcode_path, 'r', encoding='utf-8', errors='replace')
    except OSError as e:
        raise SourceUnreadableError(f"Error opening file: {e}")

    with fh:
        try:
            return scan_lines(fh, logger, stop_early=stop_early)
        except OSError as e:
            raise SourceUnreadableError(f"Error reading file: {e}")
