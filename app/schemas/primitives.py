from __future__ import annotations

from typing import Annotated

from pydantic import Field

# --- Currency primitives (integer minor-unit-free amounts) ---
Money = Annotated[int, Field(gt=0, description="Positive integer amount")]
NonNegMoney = Annotated[int, Field(ge=0, description="Non-negative integer amount")]
UserId = Annotated[str, Field(min_length=1, max_length=64)]
