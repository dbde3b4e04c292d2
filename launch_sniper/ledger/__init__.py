from launch_sniper.ledger.gateway import CoinObject, GatewayError, LedgerEvent, SuiGateway
from launch_sniper.ledger.keys import Wallet, load_wallets

__all__ = ["CoinObject", "GatewayError", "LedgerEvent", "SuiGateway", "Wallet", "load_wallets"]
