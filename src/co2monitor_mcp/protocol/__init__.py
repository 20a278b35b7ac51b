"""Protocol layer: frame cipher, decoded frame layout, and reading aggregation."""

from .cipher import KEY, decrypt, encrypt, validate
from .framing import DecodedFrame, OpCode, parse_frame
from .aggregator import AggregatorState, ReadingAggregator
