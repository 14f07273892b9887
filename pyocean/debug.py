import logging
from typing import Optional

import numpy
import numpy.typing

from . import core


def check_zero(
    name: str,
    values: numpy.typing.ArrayLike,
    tol: float = 1e-15,
    logger: Optional[logging.Logger] = None,
) -> bool:
    logger = logger or logging.getLogger()
    max_val = numpy.abs(values).max()
    success = max_val < tol
    logger.log(logging.INFO if success else logging.ERROR, "%s: %.6e" % (name, max_val))
    return success


def check_equal(
    name: str,
    values: numpy.typing.ArrayLike,
    values_ref: numpy.typing.ArrayLike,
    rtol=1e-15,
    atol=1e-15,
    logger: Optional[logging.Logger] = None,
) -> bool:
    logger = logger or logging.getLogger()
    values = numpy.asarray(values)
    values_ref = numpy.asarray(values_ref)
    abs_dif = abs(values - values_ref)
    valid = abs_dif <= rtol * abs(values_ref) + atol
    success = valid.all()
    logger.log(
        logging.INFO if success else logging.ERROR,
        "%s: maximum absolute difference %.6e" % (name, abs_dif.max(initial=0.0)),
    )
    return success


def check_range(
    name: str,
    values: numpy.typing.ArrayLike,
    rtol=1e-12,
    atol=1e-12,
    target_value=None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Check that ``values`` are homogeneous and, if ``target_value`` is given,
    equal to that value"""
    logger = logger or logging.getLogger()
    values = numpy.asarray(values)
    absrange = values.max() - values.min()
    mean = values.mean()
    crit = rtol * abs(mean) + atol
    valid = absrange < crit
    result = "OK" if valid else "FAILED because field is not homogeneous"
    relrange = 0 if absrange == 0 else absrange / abs(mean)
    if valid and target_value is not None:
        valid = abs(mean - target_value) < rtol * abs(target_value) + atol
        if not valid:
            result = "FAILED to match target value %.6g" % target_value
    logger.log(
        logging.INFO if valid else logging.ERROR,
        "%s %s (mean %.6g, spread %.6g, relative spread %.6g)"
        % (name, result, mean, absrange, relrange),
    )
    return valid


def log_range(field: core.Field, logger: Optional[logging.Logger] = None):
    logger = logger or logging.getLogger()
    logger.info("%s: %s - %s" % (field.name, field.ma.min(), field.ma.max()))
