# Overview: Service-layer operations for aggregate reconciliation; repairs Item.quantity drift.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import Item
from .concurrency import begin_write_transaction, run_with_retry
from .stock_ledger import load_item, sum_location_quantities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftReport:
    item_id: int
    before: int
    after: int

    @property
    def drifted(self) -> bool:
        return self.before != self.after

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "before": self.before,
            "after": self.after,
            "drifted": self.drifted,
        }


def check_drift(item_id: int) -> DriftReport:
    """Read-only: compare the cached aggregate with the stock rows."""
    item = load_item(item_id, lock=False, require_active=False)
    return DriftReport(item_id=item.id, before=item.quantity, after=sum_location_quantities(item.id))


def reconcile(item_id: int) -> DriftReport:
    """
    Overwrite Item.quantity with SUM(LocationStock.quantity) when they differ.

    Never touches stock rows. Running it twice in a row reports no drift the
    second time.
    """
    def _op() -> DriftReport:
        begin_write_transaction()
        item = load_item(item_id, require_active=False)
        report = DriftReport(item_id=item.id, before=item.quantity, after=sum_location_quantities(item.id))
        if report.drifted:
            item.quantity = report.after
            db.session.commit()
            logger.warning(
                "Reconciled item %s: aggregate %s -> %s",
                item_id,
                report.before,
                report.after,
            )
        else:
            db.session.rollback()
        return report

    return run_with_retry(_op)


def reconcile_all(*, dry_run: bool = False) -> list[DriftReport]:
    """Reconcile every item; returns only the reports that drifted."""
    item_ids = [row[0] for row in db.session.query(Item.id).order_by(Item.id.asc()).all()]
    reports = []
    for item_id in item_ids:
        report = check_drift(item_id) if dry_run else reconcile(item_id)
        if report.drifted:
            reports.append(report)
    return reports
