"""Wire codec（分帧格式的编码/解码）。"""

from __future__ import annotations

from ipc_pyssh.wire.codec import NEED_MORE_DATA, FrameReader, Message, Opcode, decode, encode

__all__ = ["NEED_MORE_DATA", "FrameReader", "Message", "Opcode", "decode", "encode"]
