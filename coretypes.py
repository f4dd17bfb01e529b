from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Literal, List, Tuple, Dict, Any, Callable


# Holding area for the records passed between the scanner, the payload
# builder and the reporter

JobReason = Literal[
    'reported',
    'usage',
    'log_unavailable',
    'source_unreadable',
    'malformed_filament',
    'no_filament',
    'post_failed',
]

MULTI_TOOL_MODEL = 'XL5'
MULTI_TOOL_COLOUR_COUNT = 5


def expected_colour_count(printer_model: str) -> int:
    """ How many extruder colour lines a file for this printer should carry. """
    return MULTI_TOOL_COLOUR_COUNT if printer_model == MULTI_TOOL_MODEL else 1


@dataclass(kw_only=True)
class JobSettings:
    log_file: Path
    endpoint: str
    timeout_s: float
    output_path: Optional[str] = None # Where the slicer will write the final file, if it says
    stop_early: bool = False
    problems: List[str] = field(default_factory=list) # Bad settings, logged once the log is open


@dataclass
class ParseResult:
    filament_used_grams: List[float] = field(default_factory=list)
    printer_model: str = ""
    extruder_colours: List[str] = field(default_factory=list)

    def is_complete(self, expected_colours_for: Callable[[str], int] = expected_colour_count) -> bool:
        """
        True once every field has been seen; only consulted when scanning
        with stop_early, since colour lines may come after the filament line.
        """
        if not self.filament_used_grams or not self.printer_model:
            return False
        return len(self.extruder_colours) == expected_colours_for(self.printer_model)


@dataclass(frozen=True)
class ReportPayload:
    filename: str
    filament_used: Tuple[float, ...]
    printer_model: str
    extruder_colour: Tuple[str, ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        # These key names are read by the job tracker and must not change
        return {
            'filename': self.filename,
            'filament_used': list(self.filament_used),
            'printer_model': self.printer_model,
            'extruder_colour': list(self.extruder_colour),
        }


@dataclass(kw_only=True)
class JobResult:
    ok: bool
    reason: JobReason
    payload: Optional[ReportPayload] = None
    status: Optional[str] = None # HTTP status line, when the POST completed
    message: str = ""
