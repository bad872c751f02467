"""
Read-only integrity check over USDT-funded purchase pairs.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlmodel import Session

from db_engine import session_scope
from models import CryptoTransaction
from repositories import TransactionRepository

logger = logging.getLogger(__name__)

TOLERANCE = 1e-6


@dataclass
class Finding:
    """One problem found on a ledger row."""
    transaction_id: int
    problem: str
    linked_transaction_id: Optional[int] = None


@dataclass
class ConsistencyReport:
    orphaned_legs: List[Finding] = field(default_factory=list)
    amount_mismatches: List[Finding] = field(default_factory=list)
    checked: int = 0

    @property
    def ok(self) -> bool:
        return not self.orphaned_legs and not self.amount_mismatches

    def to_dict(self) -> Dict:
        return {
            'ok': self.ok,
            'checked': self.checked,
            'orphaned_legs': [vars(f) for f in self.orphaned_legs],
            'amount_mismatches': [vars(f) for f in self.amount_mismatches],
        }


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=TOLERANCE)


class ConsistencyChecker:
    """Finds USDT-funded purchases whose two legs no longer agree."""

    @staticmethod
    def _funded_legs(session: Session) -> Dict[int, CryptoTransaction]:
        return {tx.id: tx for tx in TransactionRepository.get_usdt_funded(session=session)}

    @staticmethod
    def _partner(tx: CryptoTransaction, legs: Dict[int, CryptoTransaction]) -> Optional[CryptoTransaction]:
        """The linked leg, if it exists and links back."""
        if tx.linked_transaction_id is None:
            return None
        partner = legs.get(tx.linked_transaction_id)
        if partner is None or partner.linked_transaction_id != tx.id:
            return None
        return partner

    @staticmethod
    def find_orphaned_legs(session: Optional[Session] = None) -> List[Finding]:
        """Funding legs without their purchase, and funded purchases without a funding leg."""
        findings = []
        with session_scope(session) as sess:
            legs = ConsistencyChecker._funded_legs(sess)

        for tx in legs.values():
            partner = ConsistencyChecker._partner(tx, legs)
            if tx.is_funding_leg and (partner is None or not partner.is_usdt_funded_buy):
                findings.append(Finding(tx.id, "USDT funding leg has no linked purchase", tx.linked_transaction_id))
            elif tx.is_usdt_funded_buy and (partner is None or not partner.is_funding_leg):
                findings.append(Finding(tx.id, "USDT-funded purchase has no funding leg", tx.linked_transaction_id))
        return findings

    @staticmethod
    def find_amount_mismatches(session: Optional[Session] = None) -> List[Finding]:
        """
        Pairs whose amounts break the funding rules.

        The purchase fee is folded into the funding amount when recorded, so
        a pair can only be checked against its lower bound quantity x price.
        """
        findings = []
        with session_scope(session) as sess:
            legs = ConsistencyChecker._funded_legs(sess)

        for tx in legs.values():
            if tx.is_funding_leg:
                if not _close(tx.quantity, tx.total_amount):
                    findings.append(Finding(
                        tx.id, f"Funding leg quantity {tx.quantity} != total {tx.total_amount}",
                        tx.linked_transaction_id
                    ))
                if not _close(tx.price_per_unit, 1.0):
                    findings.append(Finding(
                        tx.id, f"Funding leg priced at {tx.price_per_unit}, expected 1.0",
                        tx.linked_transaction_id
                    ))
                purchase = ConsistencyChecker._partner(tx, legs)
                if purchase is not None and purchase.is_usdt_funded_buy:
                    cost = purchase.quantity * purchase.price_per_unit
                    if tx.total_amount < cost - TOLERANCE:
                        findings.append(Finding(
                            tx.id, f"Funding amount {tx.total_amount:.2f} is below purchase cost {cost:.2f}",
                            purchase.id
                        ))
            elif tx.is_usdt_funded_buy and (tx.total_amount or tx.fee):
                findings.append(Finding(
                    tx.id, f"USDT-funded purchase carries cash (total {tx.total_amount}, fee {tx.fee})",
                    tx.linked_transaction_id
                ))
        return findings

    @staticmethod
    def run(session: Optional[Session] = None) -> ConsistencyReport:
        """Run every check and log what was found."""
        with session_scope(session) as sess:
            report = ConsistencyReport(
                orphaned_legs=ConsistencyChecker.find_orphaned_legs(session=sess),
                amount_mismatches=ConsistencyChecker.find_amount_mismatches(session=sess),
                checked=len(TransactionRepository.get_usdt_funded(session=sess)),
            )

        for finding in report.orphaned_legs + report.amount_mismatches:
            logger.warning(f"Ledger inconsistency on transaction {finding.transaction_id}: {finding.problem}")
        if report.ok:
            logger.info(f"Consistency check passed ({report.checked} USDT-funded row(s))")
        return report
