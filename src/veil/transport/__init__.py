# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Session transport, datagram codec and provider interfaces."""

from .codec import CodecError, DatagramCodec, InvalidSignatureError, MalformedDatagramError
from .provider import (
    ProviderSession,
    ProviderSessionError,
    RouterProvider,
    SessionListener,
    SessionManager,
)
from .session import SendError, SendResult, SessionEvent, SessionEventKind, SessionTransport

__all__ = [
    "CodecError",
    "DatagramCodec",
    "InvalidSignatureError",
    "MalformedDatagramError",
    "ProviderSession",
    "ProviderSessionError",
    "RouterProvider",
    "SendError",
    "SendResult",
    "SessionEvent",
    "SessionEventKind",
    "SessionListener",
    "SessionManager",
    "SessionTransport",
]
