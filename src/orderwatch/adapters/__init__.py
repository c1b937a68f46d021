from .chain import (
    ChainClient,
    ChainReader,
    ChainSession,
    ChainSnapshot,
    ChainWriter,
    EncryptedInputProducer,
    ReceiptSource,
    SessionNotConnectedError,
)
from .jsonrpc_client import (
    ChainRequestError,
    ConfigurationError,
    JsonRpcChainClient,
    JsonRpcError,
)

__all__ = [
    "ChainClient",
    "ChainReader",
    "ChainRequestError",
    "ChainSession",
    "ChainSnapshot",
    "ChainWriter",
    "ConfigurationError",
    "EncryptedInputProducer",
    "JsonRpcChainClient",
    "JsonRpcError",
    "ReceiptSource",
    "SessionNotConnectedError",
]
