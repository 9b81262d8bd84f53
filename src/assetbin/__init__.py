"""assetbin: binary asset containers for the rendering engine.

Top-level re-exports cover the common entry points; the subpackages
(``assetbin.layout``, ``assetbin.container``, ``assetbin.bundle``) hold the
full API.
"""

from .errors import (
    AssetBinError,
    BadMagic,
    BundleError,
    DecompressionError,
    IntegrityMismatch,
    InvalidEncoding,
    LayoutError,
    OutOfBounds,
    PolicyError,
    UnsupportedVariant,
)
from .layout import (
    Dedup,
    FormatPolicy,
    Layout,
    Traversal,
    check_round_trip,
    decode,
    encode,
    read_layout,
)
from .container import Algorithm, iter_unpack, pack, unpack
from .bundle import (
    STREAMING_POLICY,
    BundlePolicy,
    Segment,
    SegmentPolicy,
    assemble,
    disassemble,
    load_policy,
)

__version__ = "0.1.0"

__all__ = [
    "AssetBinError",
    "BadMagic",
    "BundleError",
    "DecompressionError",
    "IntegrityMismatch",
    "InvalidEncoding",
    "LayoutError",
    "OutOfBounds",
    "PolicyError",
    "UnsupportedVariant",
    "Dedup",
    "FormatPolicy",
    "Layout",
    "Traversal",
    "check_round_trip",
    "decode",
    "encode",
    "read_layout",
    "Algorithm",
    "iter_unpack",
    "pack",
    "unpack",
    "STREAMING_POLICY",
    "BundlePolicy",
    "Segment",
    "SegmentPolicy",
    "assemble",
    "disassemble",
    "load_policy",
    "__version__",
]
