"""
Composition root: wires storage, audit trail and the finance components
from one explicit configuration value.
"""

from typing import Optional

from .config import BursaryConfig, load_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail, AuditEventType
from .accounts import ChartOfAccounts
from .ledger import GeneralLedger
from .approval_rules import ApprovalRuleEngine
from .approval_workflow import ApprovalWorkflow
from .reconciliation import BankReconciliation
from .operations import FinanceOperations
from .seed import seed_all
from .logging_config import setup_logging, get_logger

logger = get_logger("bursary.system")


class BursarySystem:
    """School finance ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[BursaryConfig] = None,
        storage: Optional[StorageInterface] = None,
        configure_logging: bool = False
    ):
        self.config = config or load_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage)
        if configure_logging:
            setup_logging(self.config.log_level, self.config.log_format)
        self._build_components()

        if self.config.seed_on_startup:
            seed_all(self.chart, self.rule_engine)

    def _build_components(self) -> None:
        config = self.config
        self.chart = ChartOfAccounts(self.storage, self.audit_trail)
        self.ledger = GeneralLedger(self.storage, self.audit_trail, self.chart, config.currency)
        self.rule_engine = ApprovalRuleEngine(self.storage, self.audit_trail)
        self.workflow = ApprovalWorkflow(
            self.storage, self.audit_trail, self.ledger, self.rule_engine,
            approval_policy=config.approval_policy
        )
        self.reconciliation = BankReconciliation(
            self.storage, self.audit_trail, self.ledger,
            amount_tolerance_minor_units=config.amount_tolerance_minor_units,
            date_tolerance_days=config.date_tolerance_days,
            closing_balance_tolerance_minor_units=config.closing_balance_tolerance_minor_units,
            bank_payment_methods=config.bank_payment_methods
        )
        self.operations = FinanceOperations(self.chart, self.ledger, self.workflow, self.reconciliation)

    def reload_config(self, config: Optional[BursaryConfig] = None) -> BursaryConfig:
        """
        Replace the configuration and rebuild every component with it

        The storage backend stays open; a changed database_url takes effect
        on the next start.
        """
        new_config = config or load_config()
        if new_config.database_url != self.config.database_url:
            logger.warning("database_url changed; restart required for it to take effect")
        if new_config.ledger_currency != self.config.ledger_currency:
            logger.warning("ledger_currency changed from %s to %s",
                           self.config.ledger_currency, new_config.ledger_currency)

        before = self.config.model_dump()
        self.config = new_config
        self._build_components()
        self.audit_trail.log_event(
            AuditEventType.CONFIG_RELOADED, "system", "config",
            metadata={"before": before, "after": new_config.model_dump()}
        )
        logger.info("Configuration reloaded")
        return new_config

    def close(self) -> None:
        self.storage.close()
