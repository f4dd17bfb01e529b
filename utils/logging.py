import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from coretypes import JobReason

LOGGER_NAME = 'post_job'
LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'


class JobError(RuntimeError):
    """ A failure that stops the job before anything is reported. """
    reason: JobReason = 'source_unreadable'

class SourceUnreadableError(JobError):
    reason = 'source_unreadable'

class MalformedFilamentError(JobError):
    reason = 'malformed_filament'

class NoFilamentError(JobError):
    reason = 'no_filament'

class ReportError(JobError):
    reason = 'post_failed'


@contextmanager
def open_job_log(log_file: Path) -> Iterator[logging.Logger]:
    """
    Opens the diagnostic log in append mode for the length of one job and
    yields a logger writing to it. The handler is detached and closed on the
    way out, however the job ends.

    Raises OSError if the log file can't be opened.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger(LOGGER_NAME)
    previous_level, previous_propagate = logger.level, logger.propagate
    logger.setLevel(logging.DEBUG)
    logger.propagate = False # The log file is the only sink
    logger.addHandler(handler)
    try:
        yield logger
    finally:
        logger.removeHandler(handler)
        handler.close()
        logger.setLevel(previous_level)
        logger.propagate = previous_propagate
