from momentcart.common.logging_setup import get_logger

logger = get_logger("momentcart.common")
