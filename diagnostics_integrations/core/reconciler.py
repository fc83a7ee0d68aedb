"""
Deal row reconciliation.

Merges a diagnostics submission into a deal's existing product rows and
returns the complete replacement list:

- rows unrelated to diagnostics or verification pass through untouched;
- all diagnostic rows collapse into one aggregate row, likewise verification;
  the aggregate re-sums existing quantity/amount with the new entries, so
  repeat submissions add up instead of duplicating;
- repairs become new rows named after the device, with the parts cost spread
  over them per unit of repair quantity.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config import Settings
from ..models import LineItem, PartEntry, ServiceCategory, ServiceEntry, round_money
from .classifier import ServiceClassifier


logger = logging.getLogger(__name__)

AGGREGATED_CATEGORIES = (ServiceCategory.DIAGNOSTIC, ServiceCategory.VERIFICATION)


@dataclass
class CategoryTotals:
    """Quantity and amount contributed by one category of a submission"""

    quantity: float = 0.0
    amount: float = 0.0
    first_id: Optional[int] = None
    entries: int = 0

    def add(self, entry: ServiceEntry):
        if self.entries == 0:
            self.first_id = entry.id
        self.entries += 1
        self.quantity += entry.qty
        self.amount += entry.amount


@dataclass
class ReconcileOutcome:
    """Replacement rows plus what this submission contributed"""

    rows: List[LineItem]
    added: Dict[ServiceCategory, CategoryTotals]
    repair_rows: List[LineItem] = field(default_factory=list)
    parts_sum: float = 0.0
    parts_surcharge: float = 0.0

    @property
    def diagnostic_qty(self) -> float:
        return self.added[ServiceCategory.DIAGNOSTIC].quantity

    @property
    def verification_qty(self) -> float:
        return self.added[ServiceCategory.VERIFICATION].quantity

    @property
    def repairs_qty(self) -> float:
        return self.added[ServiceCategory.REPAIR].quantity

    @property
    def services_sum(self) -> float:
        """Submitted service prices times quantities, parts excluded"""
        return sum(totals.amount for totals in self.added.values())


class RowReconciler:
    """Aggregation engine for deal product rows"""

    def __init__(self, settings: Settings, classifier: Optional[ServiceClassifier] = None):
        self.settings = settings
        self.classifier = classifier or ServiceClassifier.from_settings(settings)
        self.labels = {
            ServiceCategory.DIAGNOSTIC: settings.DIAGNOSTIC_LABEL,
            ServiceCategory.VERIFICATION: settings.VERIFICATION_LABEL,
        }

    def reconcile(self, existing: Sequence[LineItem], services: Sequence[ServiceEntry],
                  parts: Sequence[PartEntry], device_name: str) -> ReconcileOutcome:
        """
        Build the deal's new product rows

        Args:
            existing: Rows currently on the deal
            services: Services of this submission
            parts: Parts of this submission (priced into repairs only)
            device_name: Display name used in repair row names

        Returns:
            ReconcileOutcome whose rows replace the deal's rows wholesale
        """
        added = {category: CategoryTotals() for category in ServiceCategory}
        repairs: List[ServiceEntry] = []
        for entry in services:
            category = self.classifier.classify(entry.name)
            added[category].add(entry)
            if category == ServiceCategory.REPAIR:
                repairs.append(entry)

        matched: Dict[ServiceCategory, List[LineItem]] = {c: [] for c in AGGREGATED_CATEGORIES}
        rest: List[LineItem] = []
        for row in existing:
            category = self.classifier.row_category(row.name, AGGREGATED_CATEGORIES)
            if category is None:
                rest.append(row)
            else:
                matched[category].append(row)

        parts_sum = sum(p.amount for p in parts)
        repair_qty = added[ServiceCategory.REPAIR].quantity
        surcharge = parts_sum / repair_qty if repair_qty > 0 else 0.0
        repair_rows = self._repair_rows(repairs, surcharge, device_name)
        rest.extend(repair_rows)

        for category in AGGREGATED_CATEGORIES:
            aggregate = self._aggregate(category, matched[category], added[category])
            if aggregate is not None:
                rest.append(aggregate)

        logger.info(
            f"Reconciled {len(existing)} existing rows into {len(rest)}: "
            f"diagnostic +{added[ServiceCategory.DIAGNOSTIC].quantity}, "
            f"verification +{added[ServiceCategory.VERIFICATION].quantity}, "
            f"{len(repair_rows)} repair rows"
        )
        return ReconcileOutcome(
            rows=rest,
            added=added,
            repair_rows=repair_rows,
            parts_sum=parts_sum,
            parts_surcharge=surcharge,
        )

    def _aggregate(self, category: ServiceCategory, matched: Sequence[LineItem],
                   added: CategoryTotals) -> Optional[LineItem]:
        """One row carrying the combined quantity and amount, or None when empty"""
        quantity = sum(row.quantity for row in matched) + added.quantity
        amount = sum(row.amount for row in matched) + added.amount
        if quantity <= 0:
            return None

        product_id = next((row.catalog_id for row in matched if row.catalog_id), None)
        if product_id is None and added.first_id is not None:
            product_id = str(added.first_id)

        return LineItem(
            product_id=product_id,
            name=self.labels[category],
            price=round_money(amount / quantity),
            quantity=quantity,
        )

    def _repair_rows(self, repairs: Sequence[ServiceEntry], surcharge: float,
                     device_name: str) -> List[LineItem]:
        # Only repairs of the same submission merge; rows from earlier
        # submissions are never matched here
        groups: Dict[str, LineItem] = {}
        for entry in repairs:
            product_id = str(entry.id) if entry.id is not None else None
            full_name = f"{entry.name or self.settings.REPAIR_LABEL} — {device_name}"
            key = f"{product_id}_{full_name}" if product_id else full_name

            if key in groups:
                groups[key].quantity += entry.qty
                continue
            groups[key] = LineItem(
                product_id=product_id,
                name=full_name,
                price=round_money(entry.price + surcharge),
                quantity=entry.qty,
            )
        return list(groups.values())
