"""Error definitions for assetbin."""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

E_OUT_OF_BOUNDS = "E_OUT_OF_BOUNDS"
E_INVALID_ENCODING = "E_INVALID_ENCODING"
E_BAD_MAGIC = "E_BAD_MAGIC"
E_DECOMPRESSION = "E_DECOMPRESSION"
E_INTEGRITY = "E_INTEGRITY"
E_UNSUPPORTED_VARIANT = "E_UNSUPPORTED_VARIANT"
E_MISSING_FIELD = "E_MISSING_FIELD"
E_VALUE_RANGE = "E_VALUE_RANGE"
E_COUNT_MISMATCH = "E_COUNT_MISMATCH"
E_POINTER_RANGE = "E_POINTER_RANGE"
E_CYCLE = "E_CYCLE"
E_SCHEMA = "E_SCHEMA"
E_UNKNOWN_KIND = "E_UNKNOWN_KIND"
E_MISSING_SEGMENT = "E_MISSING_SEGMENT"
E_TOO_MANY_SEGMENTS = "E_TOO_MANY_SEGMENTS"
E_OVERLAP = "E_OVERLAP"
E_ALIGNMENT = "E_ALIGNMENT"
E_POLICY = "E_POLICY"
E_INTERNAL = "E_INTERNAL"


@dataclass(eq=False)
class AssetBinError(Exception):
    code: str
    message: str
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}" + (
            f" | ctx={self.context}" if self.context else ""
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context or {},
        }


class OutOfBounds(AssetBinError):
    pass


class InvalidEncoding(AssetBinError):
    pass


class BadMagic(AssetBinError):
    pass


class IntegrityMismatch(AssetBinError):
    pass


class DecompressionError(IntegrityMismatch):
    """Malformed compressed stream; a corrupt container is an integrity failure."""


class UnsupportedVariant(AssetBinError):
    pass


class LayoutError(AssetBinError):
    pass


class BundleError(AssetBinError):
    pass


class PolicyError(AssetBinError):
    pass


def out_of_bounds(
    offset: int, size: int, limit: int, what: str = ""
) -> OutOfBounds:
    return OutOfBounds(
        code=E_OUT_OF_BOUNDS,
        message=(
            f"{what or 'read'} needs bytes [{offset}, {offset + size}) "
            f"but buffer holds {limit}"
        ),
        context={
            "field": what,
            "offset": offset,
            "size": size,
            "buffer_size": limit,
        },
    )


def bad_magic(
    expected: bytes, actual: bytes, offset: int, what: str = ""
) -> BadMagic:
    return BadMagic(
        code=E_BAD_MAGIC,
        message=f"expected magic {expected!r} but found {actual!r}",
        context={
            "field": what,
            "offset": offset,
            "expected": expected.hex(),
            "actual": actual.hex(),
        },
    )


def unsupported_variant(
    what: str, value: Any, offset: int | None = None, **extra: Any
) -> UnsupportedVariant:
    ctx: Dict[str, Any] = {"field": what, "actual": value}
    if offset is not None:
        ctx["offset"] = offset
    ctx.update(extra)
    return UnsupportedVariant(
        code=E_UNSUPPORTED_VARIANT,
        message=f"unsupported value {value!r} for {what}",
        context=ctx,
    )


def layout_error(
    code: str, message: str, context: Optional[Dict[str, Any]] = None
) -> LayoutError:
    return LayoutError(code=code, message=message, context=context)


def bundle_error(
    code: str, message: str, context: Optional[Dict[str, Any]] = None
) -> BundleError:
    return BundleError(code=code, message=message, context=context)


def policy_error(
    message: str, context: Optional[Dict[str, Any]] = None
) -> PolicyError:
    return PolicyError(code=E_POLICY, message=message, context=context)


def internal_error(
    message: str, context: Optional[Dict[str, Any]] = None
) -> AssetBinError:
    return AssetBinError(code=E_INTERNAL, message=message, context=context)


__all__ = [
    "AssetBinError",
    "OutOfBounds",
    "InvalidEncoding",
    "BadMagic",
    "IntegrityMismatch",
    "DecompressionError",
    "UnsupportedVariant",
    "LayoutError",
    "BundleError",
    "PolicyError",
    "out_of_bounds",
    "bad_magic",
    "unsupported_variant",
    "layout_error",
    "bundle_error",
    "policy_error",
    "internal_error",
    "E_OUT_OF_BOUNDS",
    "E_INVALID_ENCODING",
    "E_BAD_MAGIC",
    "E_DECOMPRESSION",
    "E_INTEGRITY",
    "E_UNSUPPORTED_VARIANT",
    "E_MISSING_FIELD",
    "E_VALUE_RANGE",
    "E_COUNT_MISMATCH",
    "E_POINTER_RANGE",
    "E_CYCLE",
    "E_SCHEMA",
    "E_UNKNOWN_KIND",
    "E_MISSING_SEGMENT",
    "E_TOO_MANY_SEGMENTS",
    "E_OVERLAP",
    "E_ALIGNMENT",
    "E_POLICY",
    "E_INTERNAL",
]
