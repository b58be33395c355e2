from datetime import datetime
from typing import Callable
from momentcart.common.utils import now


async def get_clock() -> Callable[[], datetime]:
    return now
