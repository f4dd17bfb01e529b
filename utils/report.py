import json
import logging
from pathlib import Path
from typing import Optional

import requests

from coretypes import ParseResult, ReportPayload
from utils.logging import NoFilamentError, ReportError

DEFAULT_ENDPOINT = "http://10.0.30.204:5173/api/pending"
DEFAULT_TIMEOUT_S = 10


def output_filename(output_path: Optional[str]) -> str:
    """ Base name of the slicer's intended output file, '' if it didn't give one. """
    if not output_path:
        return ''
    return Path(output_path).name


def build_payload(result: ParseResult, output_path: Optional[str]) -> ReportPayload:
    if not result.filament_used_grams:
        raise NoFilamentError("Filament used extraction failed, length 0")

    return ReportPayload(
        filename=output_filename(output_path),
        filament_used=tuple(result.filament_used_grams),
        printer_model=result.printer_model,
        extruder_colour=tuple(result.extruder_colours),
    )


def payload_to_json(payload: ReportPayload) -> str:
    return json.dumps(payload.to_wire())


def post_payload(
    payload: ReportPayload,
    url: str,
    logger: logging.Logger,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    '''
    Sends the payload to the job tracker and returns the response status line.
    The status is only logged; any completed exchange counts as reported.
    '''
    logger.info(payload_to_json(payload))

    try:
        response = requests.post(url, json=payload.to_wire(), timeout=timeout)
    except (requests.exceptions.RequestException, ValueError) as e:
        # urllib3 raises ValueError for settings it rejects, such as a zero timeout
        raise ReportError(f"Error sending POST: {e}")

    status = f"{response.status_code} {response.reason}"
    response.close()
    logger.info(f"Response Status: {status}")
    return status
