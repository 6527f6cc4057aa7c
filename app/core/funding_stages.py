# app/core/funding_stages.py
from enum import Enum


class FundingStage(str, Enum):
    PRE_SEED = "preSeedFunding"
    SEED = "seedFunding"
    SERIES_A = "seriesA"
    SERIES_B = "seriesB"
    SERIES_C = "seriesC"
    IPO = "ipo"


# Fixed release order; index 0 is the first stage to activate.
STAGE_ORDER = (
    FundingStage.PRE_SEED,
    FundingStage.SEED,
    FundingStage.SERIES_A,
    FundingStage.SERIES_B,
    FundingStage.SERIES_C,
    FundingStage.IPO,
)

# Default share of the proposed total released at each stage (percent).
DEFAULT_DISTRIBUTION_PCT = {
    FundingStage.PRE_SEED: 10,
    FundingStage.SEED: 20,
    FundingStage.SERIES_A: 20,
    FundingStage.SERIES_B: 20,
    FundingStage.SERIES_C: 20,
    FundingStage.IPO: 10,
}

STAGE_LABELS = {
    FundingStage.PRE_SEED: "Pre-Seed",
    FundingStage.SEED: "Seed",
    FundingStage.SERIES_A: "Series A",
    FundingStage.SERIES_B: "Series B",
    FundingStage.SERIES_C: "Series C",
    FundingStage.IPO: "IPO",
}
