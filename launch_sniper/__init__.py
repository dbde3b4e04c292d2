"""
launch-sniper - watch a token launchpad, decide fast, buy across a wallet pool.

An autonomous trading agent for the Turbos "turbospump" launchpad on Sui.
It polls the ledger for freshly created tokens, runs them through a set of
auto-buy risk criteria and fans orders out over several independently funded
wallets. When a creator of a token we hold starts selling, we dump ours.
"""

__version__ = "0.1.0"
