import logging

logger = logging.getLogger("shopbot")
