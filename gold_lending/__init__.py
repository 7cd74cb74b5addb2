"""
Gold Lending Core

Gold-collateral loans repaid in equal monthly installments: origination,
installment tracking, payment allocation, early payoff quotes and closure.
"""

__version__ = "1.0.0"
