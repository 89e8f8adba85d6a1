from typing import Final

__prog__: Final = "scorely"
