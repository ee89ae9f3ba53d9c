import logging
import sys
from pathlib import Path
import datetime

def setup_logging(level="INFO", log_file=None, log_format=None):
    """
    Set up logging for the histocorr package

    Parameters
    ----------
    level : str, optional
        Logging level. Options: 'DEBUG', 'INFO', 'WARNING', 'ERROR'
    log_file : str or Path, optional
        Path to log file. If None, logs only to console
    log_format : str, optional
        Format string for log messages. If None, a default format is used

    Returns
    -------
    logging.Logger
        Root logger for the histocorr package
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")
    logger = logging.getLogger('histocorr')
    logger.setLevel(numeric_level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    formatter = logging.Formatter(log_format)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_path}")

    logger.info(f"Logging level set to {level}")

    return logger

def log_execution_time(logger, start_time=None):
    """
    Log the execution time of a code block

    Parameters
    ----------
    logger : logging.Logger
        Logger to use
    start_time : datetime.datetime, optional
        Start time. If None, current time is used

    Returns
    -------
    function
        Function to call at the end of the code block
    """
    if start_time is None:
        start_time = datetime.datetime.now()

    def log_end(message="Execution completed"):
        duration = datetime.datetime.now() - start_time
        hours, remainder = divmod(duration.total_seconds(), 3600)
        minutes, seconds = divmod(remainder, 60)

        if hours > 0:
            time_str = f"{int(hours)}h {int(minutes)}m {seconds:.2f}s"
        elif minutes > 0:
            time_str = f"{int(minutes)}m {seconds:.2f}s"
        else:
            time_str = f"{seconds:.2f}s"

        logger.info(f"{message} in {time_str}")
        return duration

    return log_end
