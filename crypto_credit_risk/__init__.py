"""
Crypto-Collateralized Credit Risk Engine
========================================
Risk model for a book of loans secured by crypto collateral, implementing:
- Loan-to-Value and Margin Status Monitoring
- Wrong-Way-Risk Adjusted Probability of Default
- Loss Given Default with Liquidation Slippage
- Correlated Collateral Price Simulation (Cholesky GBM)
- Correlated Defaults via One-Factor Student-t Copula
- Monte Carlo VaR / CVaR with Marginal Risk Contributions
- Scenario Stress Testing and Margin-Event Backtesting
"""

__version__ = "1.0.0"
