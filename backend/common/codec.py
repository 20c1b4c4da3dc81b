"""Binary records for frame buffers, rectangles and patch identifiers.

All integers are big-endian int32. A frame buffer record is
``rows, cols, type_code`` followed by ``rows * cols * element_size`` raw bytes,
where the element size follows from the OpenCV type code.
"""
from __future__ import annotations

import struct

import numpy as np

from common.types import Mat, PatchIdentifier, Rect

_INT = struct.Struct(">i")
_RECT = struct.Struct(">4i")
_MAT_HEADER = struct.Struct(">3i")

# OpenCV depth code -> numpy dtype (CV_8U .. CV_64F).
_DEPTH_DTYPES = {
    0: np.uint8,
    1: np.int8,
    2: np.uint16,
    3: np.int16,
    4: np.int32,
    5: np.float32,
    6: np.float64,
}
_DTYPE_DEPTHS = {np.dtype(dtype): depth for depth, dtype in _DEPTH_DTYPES.items()}


class FrameDecodeError(ValueError):
    """Raised when a frame buffer or record cannot be decoded."""


def make_type_code(depth: int, channels: int) -> int:
    return depth + ((channels - 1) << 3)


def split_type_code(type_code: int) -> tuple[int, int]:
    """Return (depth, channels) for an OpenCV type code."""
    return type_code & 7, (type_code >> 3) + 1


def element_size(type_code: int) -> int:
    depth, channels = split_type_code(type_code)
    dtype = _DEPTH_DTYPES.get(depth)
    if dtype is None:
        raise FrameDecodeError(f"Unsupported OpenCV depth {depth} in type {type_code}")
    return np.dtype(dtype).itemsize * channels


def encode_rect(rect: Rect) -> bytes:
    return _RECT.pack(rect.x, rect.y, rect.width, rect.height)


def decode_rect(buf: bytes, offset: int = 0) -> tuple[Rect, int]:
    try:
        x, y, width, height = _RECT.unpack_from(buf, offset)
    except struct.error as exc:
        raise FrameDecodeError(f"Truncated rect record at offset {offset}") from exc
    return Rect(x, y, width, height), offset + _RECT.size


def encode_patch_identifier(identifier: PatchIdentifier) -> bytes:
    if identifier.roi is None:
        raise ValueError(f"Cannot encode {identifier} without a region of interest")
    return _INT.pack(identifier.frame_id) + encode_rect(identifier.roi)


def decode_patch_identifier(buf: bytes, offset: int = 0) -> tuple[PatchIdentifier, int]:
    try:
        (frame_id,) = _INT.unpack_from(buf, offset)
    except struct.error as exc:
        raise FrameDecodeError(f"Truncated patch identifier at offset {offset}") from exc
    rect, offset = decode_rect(buf, offset + _INT.size)
    return PatchIdentifier(frame_id, rect), offset


def encode_mat(mat: Mat) -> bytes:
    expected = mat.rows * mat.cols * element_size(mat.type_code)
    if len(mat.data) != expected:
        raise ValueError(f"Mat data is {len(mat.data)} bytes, expected {expected}")
    return _MAT_HEADER.pack(mat.rows, mat.cols, mat.type_code) + bytes(mat.data)


def decode_mat(buf: bytes, offset: int = 0) -> tuple[Mat, int]:
    try:
        rows, cols, type_code = _MAT_HEADER.unpack_from(buf, offset)
    except struct.error as exc:
        raise FrameDecodeError(f"Truncated frame header at offset {offset}") from exc
    if rows < 0 or cols < 0:
        raise FrameDecodeError(f"Negative frame dimensions {rows}x{cols}")
    start = offset + _MAT_HEADER.size
    end = start + rows * cols * element_size(type_code)
    if end > len(buf):
        raise FrameDecodeError(f"Frame data truncated: need {end - start} bytes, have {len(buf) - start}")
    return Mat(rows, cols, type_code, bytes(buf[start:end])), end


def mat_from_ndarray(image: np.ndarray) -> Mat:
    """Wrap an OpenCV image (H x W or H x W x C) as a Mat."""
    depth = _DTYPE_DEPTHS.get(image.dtype)
    if depth is None:
        raise ValueError(f"Unsupported image dtype {image.dtype}")
    channels = 1 if image.ndim == 2 else image.shape[2]
    image = np.ascontiguousarray(image)
    return Mat(
        rows=image.shape[0],
        cols=image.shape[1],
        type_code=make_type_code(depth, channels),
        data=image.tobytes(),
    )


def mat_to_ndarray(mat: Mat) -> np.ndarray:
    depth, channels = split_type_code(mat.type_code)
    dtype = _DEPTH_DTYPES.get(depth)
    if dtype is None:
        raise FrameDecodeError(f"Unsupported OpenCV depth {depth} in type {mat.type_code}")
    image = np.frombuffer(mat.data, dtype=dtype)
    shape = (mat.rows, mat.cols) if channels == 1 else (mat.rows, mat.cols, channels)
    try:
        return image.reshape(shape)
    except ValueError as exc:
        raise FrameDecodeError(f"Mat data does not match {mat.rows}x{mat.cols}x{channels}") from exc
