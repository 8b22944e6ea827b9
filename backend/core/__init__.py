"""Signal generation and trade simulation logic.

Indicators, trend context, the scored signal engine and the trade
simulator. Nothing here touches the network or a database, so the live
pool (app/) and the backtest harness (backtest/) run identical rules.
"""
