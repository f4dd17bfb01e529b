#! /usr/bin/env python3

from contextlib import ExitStack
from pathlib import Path
from typing import Mapping, Optional, List, TextIO
import argparse
import logging
import math
import os
import sys

from platformdirs import user_log_path

from coretypes import JobResult, JobSettings
from utils.logging import JobError, open_job_log
from utils.metadata_parser import scan_file
from utils.report import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT_S, build_payload, output_filename, post_payload

USAGE = "Usage: post_job.py <raw_file_path>"

# PrusaSlicer hands post-processing scripts a staged copy named <output>.pp
STAGED_SUFFIX = '.pp'
OUTPUT_NAME_VAR = 'SLIC3R_PP_OUTPUT_NAME'


def parse_timeout(value: Optional[str]) -> Optional[float]:
    """ Seconds to wait on the tracker, or None if value isn't a usable timeout. """
    try:
        timeout_s = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(timeout_s) or timeout_s <= 0:
        return None
    return timeout_s


def load_settings(environ: Mapping[str, str]) -> JobSettings:
    log_file = (
        Path(environ['POST_JOB_LOG_FILE']) if 'POST_JOB_LOG_FILE' in environ
        else user_log_path('post-job', None) / 'post_job.log'
    )

    # The log isn't open yet, so bad values are kept as problems and logged by the job
    problems = []
    timeout_s = DEFAULT_TIMEOUT_S
    if 'POST_JOB_TIMEOUT' in environ:
        timeout_s = parse_timeout(environ['POST_JOB_TIMEOUT'])
        if timeout_s is None:
            problems.append(
                f"Ignoring POST_JOB_TIMEOUT={environ['POST_JOB_TIMEOUT']!r}, "
                f"using {DEFAULT_TIMEOUT_S} seconds"
            )
            timeout_s = DEFAULT_TIMEOUT_S

    return JobSettings(
        log_file=log_file,
        endpoint=environ.get('POST_JOB_ENDPOINT', DEFAULT_ENDPOINT),
        timeout_s=timeout_s,
        output_path=environ.get(OUTPUT_NAME_VAR),
        stop_early=environ.get('POST_JOB_STOP_EARLY', '') == '1',
        problems=problems,
    )


def source_path(raw_file: str) -> Path:
    return Path(raw_file.removesuffix(STAGED_SUFFIX))


def run_job(raw_file: str, settings: JobSettings, stdout: TextIO = sys.stdout) -> JobResult:
    """
    Scans one sliced file and reports its filament usage. Every outcome is
    written to the log file and returned; nothing is raised to the caller.
    """
    # ExitStack so only errors opening the log are caught here, not ones from the job itself
    with ExitStack() as stack:
        try:
            logger = stack.enter_context(open_job_log(settings.log_file))
        except OSError as e:
            stdout.write(f"Failed to open log file: {e}\n")
            return JobResult(ok=False, reason='log_unavailable', message=str(e))

        return _scan_and_report(raw_file, settings, logger)


def _scan_and_report(raw_file: str, settings: JobSettings, logger: logging.Logger) -> JobResult:
    for problem in settings.problems:
        logger.warning(problem)

    logger.info("Reading temp file")
    gcode_file = source_path(raw_file)
    logger.info(f"Source file: {gcode_file}")
    logger.info(f"Output file: {output_filename(settings.output_path)}")

    payload = None
    try:
        result = scan_file(gcode_file, logger, stop_early=settings.stop_early)
        payload = build_payload(result, settings.output_path)
        logger.info(f"Filament used: {list(payload.filament_used)}")
        logger.info(f"Printer model: {payload.printer_model}")

        status = post_payload(payload, settings.endpoint, logger, timeout=settings.timeout_s)
    except JobError as e:
        logger.error(str(e))
        return JobResult(ok=False, reason=e.reason, payload=payload, message=str(e))

    return JobResult(ok=True, reason='reported', payload=payload, status=status)


parser = argparse.ArgumentParser(
    prog='post_job.py',
    add_help=False,
)
parser.add_argument('raw_file', nargs='?')


def run(argv: Optional[List[str]], environ: Mapping[str, str], stdout: TextIO = sys.stdout) -> JobResult:
    # We use parse_known_args() so that anything extra the slicer passes along
    # doesn't make the hook fail the export
    args, _ = parser.parse_known_args(argv)

    if not args.raw_file:
        stdout.write(USAGE + "\n")
        return JobResult(ok=False, reason='usage', message=USAGE)

    return run_job(args.raw_file, load_settings(environ), stdout)


def main() -> int:
    run(sys.argv[1:], os.environ)

    # Failures live in the log; a non-zero exit would make the slicer abort the export
    return 0


if __name__ == "__main__":
    sys.exit(main())
