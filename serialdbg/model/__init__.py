
from .codec import DataMode, encode_outbound, decode_inbound, byte_length
from .link_config import LinkConfig

__all__ = ["DataMode",
           "LinkConfig",
           "encode_outbound",
           "decode_inbound",
           "byte_length"]
