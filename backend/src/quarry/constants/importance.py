"""Document importance constants.

Importance is a per-document multiplier derived from document kind and how
often other documents in the same collection link to it.
"""

# =============================================================================
# Base Weights
# =============================================================================
# Project entry documents carry the most weight, curated docs next, loose
# Markdown notes the least. Everything else starts at 1.0.

README_WEIGHT = 2.0
DOCS_MARKDOWN_WEIGHT = 1.8
OTHER_MARKDOWN_WEIGHT = 0.6
DEFAULT_WEIGHT = 1.0

# =============================================================================
# Link Bonus
# =============================================================================
# Each inbound link adds LINK_BONUS_PER_LINK to the multiplier, capped at
# LINK_BONUS_CAP, so importance = base * (1 + min(0.3 * links, 2.0)).

LINK_BONUS_PER_LINK = 0.3
LINK_BONUS_CAP = 2.0

# =============================================================================
# Scale
# =============================================================================

MIN_IMPORTANCE = 0.1
MAX_IMPORTANCE = 10.0
DEFAULT_IMPORTANCE = 1.0
