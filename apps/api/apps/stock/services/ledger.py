"""
Lot store and kardex primitives.

These are the only functions that write lot balances or append kardex rows.
They expect to run inside the caller's ``transaction.atomic`` block with the
affected lots already locked.
"""
from typing import Dict, Iterable

from apps.core.observability import metrics

from ..exceptions import BusinessRuleError, InsufficientStockError, NotFoundError
from ..models import LotStateChoices, StockLot, StockMovement


def lock_lots(lot_ids: Iterable[int]) -> Dict[int, StockLot]:
    """
    Lock lots with SELECT ... FOR UPDATE in ascending id order.

    Concurrent operations touching the same lots always acquire them in the
    same order, so opposite-direction transfers cannot deadlock.

    Raises:
        NotFoundError: any id does not exist (all missing ids listed)
    """
    ids = sorted(set(lot_ids))
    lots = {
        lot.id: lot
        for lot in StockLot.objects.select_for_update().filter(id__in=ids).order_by('id')
    }
    missing = [lot_id for lot_id in ids if lot_id not in lots]
    if missing:
        raise NotFoundError(f"Lot(s) not found: {', '.join(str(i) for i in missing)}")
    return lots


def open_lot(*, product, supplier, quantity, batch_code=None, expiration_date=None) -> StockLot:
    """Create a new available lot holding ``quantity`` units."""
    return StockLot.objects.create(
        product=product,
        supplier=supplier,
        batch_code=batch_code,
        expiration_date=expiration_date,
        initial_quantity=quantity,
        current_quantity=quantity,
        state=LotStateChoices.AVAILABLE,
    )


def record_movement(
    *,
    lot: StockLot,
    movement_type,
    document_type,
    document,
    quantity_delta: int,
    balance_before: int,
    actor_id,
    unit_cost=None,
    reason='',
    notes='',
) -> StockMovement:
    """Append one kardex row. Balances are taken as given."""
    movement = StockMovement.objects.create(
        product_id=lot.product_id,
        lot=lot,
        movement_type=movement_type,
        document_type=document_type,
        document_id=document.id,
        document_number=document.number,
        quantity_delta=quantity_delta,
        balance_before=balance_before,
        balance_after=balance_before + quantity_delta,
        unit_cost=unit_cost,
        reason=reason,
        notes=notes,
        actor_id=actor_id,
    )
    metrics.stock_movements_total.labels(movement_type=movement_type).inc()
    return movement


def apply_movement(
    lot: StockLot,
    quantity_delta: int,
    *,
    movement_type,
    document_type,
    document,
    actor_id,
    unit_cost=None,
    reason='',
    notes='',
) -> StockMovement:
    """
    Change a locked lot's balance and append the matching kardex row.

    The lot state is derived from the resulting balance: depleted at zero,
    available otherwise.

    Raises:
        BusinessRuleError: quantity_delta is zero
        InsufficientStockError: the lot would go below zero
    """
    if quantity_delta == 0:
        raise BusinessRuleError('A stock movement must change the quantity.')

    balance_before = lot.current_quantity
    balance_after = balance_before + quantity_delta
    if balance_after < 0:
        raise InsufficientStockError(
            f"Lot {lot.id} ({lot.batch_code or 'NO-BATCH'}) holds {balance_before}, "
            f"cannot remove {-quantity_delta}.",
            product_id=lot.product_id,
            requested=-quantity_delta,
            best_available=balance_before,
            batch_code=lot.batch_code,
        )

    lot.current_quantity = balance_after
    lot.state = StockLot.state_for(balance_after)
    lot.save(update_fields=['current_quantity', 'state', 'updated_at'])

    return record_movement(
        lot=lot,
        movement_type=movement_type,
        document_type=document_type,
        document=document,
        quantity_delta=quantity_delta,
        balance_before=balance_before,
        actor_id=actor_id,
        unit_cost=unit_cost,
        reason=reason,
        notes=notes,
    )
