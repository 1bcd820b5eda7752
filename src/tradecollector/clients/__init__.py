from tradecollector.clients.explorer import EtherscanClient
from tradecollector.clients.rpc import LogSubscription, WsRPC

__all__ = ["EtherscanClient", "LogSubscription", "WsRPC"]
