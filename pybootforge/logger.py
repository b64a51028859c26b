"""
Default logger initializer for pybootforge
"""

import logging

__all__ = ('logger', 'set_verbose')


formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
stream_handler = logging.StreamHandler()
stream_handler.setFormatter(formatter)
logger = logging.getLogger('pybootforge')
logger.setLevel(logging.INFO)
logger.addHandler(stream_handler)


def set_verbose(verbose: bool) -> None:
    """Switch the package logger between INFO and DEBUG"""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
