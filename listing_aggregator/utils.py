# listing_aggregator/utils.py
"""Shared utilities: logging, retry decorator and price parsing."""
import logging
import re
import time
from functools import wraps

from . import config


def get_logger(name=__name__):
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("listing-aggregator")

def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?|\.\d+")


def parse_price(text):
    """Split a marketplace price string into ``(amount, currency_code)``.

    Everything except digits and dots is stripped before reading the leading
    number, so "$1,299.99" gives 1299.99. The currency is the first symbol
    from ``config.CURRENCY_SYMBOLS`` found in the text, USD otherwise.
    Unparseable or missing prices come back as 0.0.
    """
    if text is None:
        return 0.0, config.DEFAULT_CURRENCY
    if isinstance(text, (int, float)):
        return float(text), config.DEFAULT_CURRENCY
    text = str(text)
    currency = config.DEFAULT_CURRENCY
    first = None
    for symbol, code in config.CURRENCY_SYMBOLS.items():
        pos = text.find(symbol)
        if pos != -1 and (first is None or pos < first):
            first, currency = pos, code
    m = _NUMBER_RE.search(re.sub(r"[^0-9.]", "", text))
    amount = float(m.group(0)) if m else 0.0
    return amount, currency
