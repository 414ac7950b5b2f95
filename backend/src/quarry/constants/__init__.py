"""Named constants.

Re-exports all constants for convenient importing:
    from quarry.constants import STOP_WORDS, RRF_K
"""

from quarry.constants.chunking import *  # noqa: F403
from quarry.constants.search import *  # noqa: F403
from quarry.constants.importance import *  # noqa: F403
from quarry.constants.llm import *  # noqa: F403
from quarry.constants.files import *  # noqa: F403
