"""Service modules"""
from .collateral_vault import CollateralVault
from .credit_risk import CreditRiskAdjuster
from .health_monitor import HealthMonitor, SweepResult
from .liquidation_engine import LiquidationEngine
from .loan_originator import LoanOriginator
from .market import LendingMarket
from .monitor import MarketMonitor
from .pool_ledger import PoolLedger
from .price_service import PriceService
from .repayment_processor import RepaymentProcessor, RepaymentReceipt

__all__ = [
    "CollateralVault",
    "CreditRiskAdjuster",
    "HealthMonitor",
    "LendingMarket",
    "LiquidationEngine",
    "LoanOriginator",
    "MarketMonitor",
    "PoolLedger",
    "PriceService",
    "RepaymentProcessor",
    "RepaymentReceipt",
    "SweepResult",
]
