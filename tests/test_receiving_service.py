from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from factories import add_order, add_profile, add_site, add_supplier, make_sessionmaker
from supply_portal.config import settings
from supply_portal.errors import InvalidTransition, PersistenceFailure, StaleOrder, ValidationError
from supply_portal.models import Order, OrderItem, OrderStatus, ProfileRole
from supply_portal.services.order_ref_utils import order_ref
from supply_portal.services.order_service import find_complement_order, get_order_history, list_orders, load_items
from supply_portal.services.receiving_math_service import DeliveryInput
from supply_portal.services.receiving_service import receive_order


class ReceivingServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_sessionmaker()()
        self.site = add_site(self.db)
        self.worker = add_profile(self.db, username='w', name='Worker', role=ProfileRole.WORKER, site_id=self.site.id)
        self.supplier = add_supplier(self.db, 'Depósito Central')
        self.order, self.items = add_order(
            self.db,
            site_id=self.site.id,
            user_id=self.worker.id,
            lines=[('Cimento', '10'), ('Areia', '5')],
            status=OrderStatus.APPROVED,
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _children(self) -> list[Order]:
        return self.db.execute(select(Order).where(Order.parent_order_id == self.order.id)).scalars().all()

    def test_full_delivery_completes_without_complement(self) -> None:
        cement, sand = self.items
        outcome = receive_order(
            self.db,
            order_id=self.order.id,
            deliveries={
                cement.id: DeliveryInput(received_quantity=Decimal('10'), unit_value=Decimal('32.50'), supplier_id=self.supplier.id),
                sand.id: DeliveryInput(received_quantity=Decimal('5')),
            },
            actor_name='João',
        )
        self.db.commit()

        self.assertEqual(outcome.order.status, OrderStatus.COMPLETED)
        self.assertIsNone(outcome.complement)
        self.assertEqual(outcome.order.received_by_name, 'João')
        self.assertIsNotNone(outcome.order.received_at)
        self.assertEqual(self._children(), [])
        self.assertEqual(cement.unit_value, Decimal('32.50'))
        self.assertEqual(cement.supplier_id, self.supplier.id)

    def test_shortfall_forks_complement_order(self) -> None:
        cement, sand = self.items
        outcome = receive_order(
            self.db,
            order_id=self.order.id,
            deliveries={
                cement.id: DeliveryInput(received_quantity=Decimal('6')),
                sand.id: DeliveryInput(received_quantity=Decimal('5')),
            },
            actor_name=None,
        )
        self.db.commit()

        self.assertEqual(outcome.order.status, OrderStatus.PARTIAL)
        self.assertEqual(outcome.order.received_by_name, 'Encarregado / Mestre de Obras')
        complement = outcome.complement
        self.assertIsNotNone(complement)
        self.assertEqual(complement.status, OrderStatus.NEW)
        self.assertEqual(complement.parent_order_id, self.order.id)
        self.assertEqual(complement.site_id, self.order.site_id)
        self.assertEqual(complement.user_id, self.order.user_id)

        child_items = load_items(self.db, order_id=complement.id)
        self.assertEqual(len(child_items), 1)
        self.assertEqual(child_items[0].name, f'[COMPLEMENTO REF {order_ref(self.order)}] Cimento')
        self.assertEqual(child_items[0].quantity, Decimal('4'))
        self.assertEqual(child_items[0].unit, 'un')
        self.assertEqual(find_complement_order(self.db, self.order).id, complement.id)

    def test_missing_delivery_entry_counts_as_nothing_received(self) -> None:
        cement, sand = self.items
        outcome = receive_order(
            self.db,
            order_id=self.order.id,
            deliveries={cement.id: DeliveryInput(received_quantity=Decimal('10'))},
            actor_name='João',
        )
        self.db.commit()

        self.assertEqual(outcome.order.status, OrderStatus.PARTIAL)
        self.assertEqual(sand.received_quantity, Decimal('0'))
        child_items = load_items(self.db, order_id=outcome.complement.id)
        self.assertEqual([row.quantity for row in child_items], [Decimal('5')])

    def test_over_delivery_is_clamped_to_zero_missing(self) -> None:
        cement, sand = self.items
        outcome = receive_order(
            self.db,
            order_id=self.order.id,
            deliveries={
                cement.id: DeliveryInput(received_quantity=Decimal('12')),
                sand.id: DeliveryInput(received_quantity=Decimal('5')),
            },
            actor_name='João',
        )
        self.assertEqual(outcome.order.status, OrderStatus.COMPLETED)
        self.assertEqual(cement.received_quantity, Decimal('12'))

    def test_over_delivery_rejected_when_disabled(self) -> None:
        cement, _ = self.items
        with patch.object(settings, 'allow_over_delivery', False):
            with self.assertRaises(ValidationError):
                receive_order(
                    self.db,
                    order_id=self.order.id,
                    deliveries={cement.id: DeliveryInput(received_quantity=Decimal('12'))},
                    actor_name='João',
                )

    def test_rejects_bad_deliveries_before_writing(self) -> None:
        cement, _ = self.items
        bad_inputs = [
            {cement.id: DeliveryInput(received_quantity=Decimal('-1'))},
            {cement.id: DeliveryInput(received_quantity=Decimal('1'), unit_value=Decimal('-5'))},
            {cement.id: DeliveryInput(received_quantity=Decimal('1'), supplier_id=999)},
            {9999: DeliveryInput(received_quantity=Decimal('1'))},
        ]
        for deliveries in bad_inputs:
            with self.assertRaises(ValidationError):
                receive_order(self.db, order_id=self.order.id, deliveries=deliveries, actor_name='João')
        self.assertEqual(self.db.get(Order, self.order.id).status, OrderStatus.APPROVED)
        self.assertIsNone(cement.received_quantity)

    def test_only_approved_orders_can_be_received(self) -> None:
        pending, items = add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[('Brita', '3')])
        self.db.commit()
        with self.assertRaises(InvalidTransition):
            receive_order(
                self.db,
                order_id=pending.id,
                deliveries={items[0].id: DeliveryInput(received_quantity=Decimal('3'))},
                actor_name='João',
            )
        self.assertEqual(self.db.get(Order, pending.id).status, OrderStatus.NEW)

    def test_receiving_twice_is_rejected(self) -> None:
        cement, sand = self.items
        deliveries = {
            cement.id: DeliveryInput(received_quantity=Decimal('10')),
            sand.id: DeliveryInput(received_quantity=Decimal('5')),
        }
        receive_order(self.db, order_id=self.order.id, deliveries=deliveries, actor_name='João')
        self.db.commit()
        with self.assertRaises(InvalidTransition):
            receive_order(self.db, order_id=self.order.id, deliveries=deliveries, actor_name='João')

    def test_stale_version_is_rejected(self) -> None:
        cement, _ = self.items
        with self.assertRaises(StaleOrder):
            receive_order(
                self.db,
                order_id=self.order.id,
                deliveries={cement.id: DeliveryInput(received_quantity=Decimal('10'))},
                actor_name='João',
                expected_version=self.order.version + 1,
            )

    def test_store_failure_rolls_back_parent_and_complement(self) -> None:
        cement, sand = self.items
        failure = OperationalError('INSERT INTO orders', {}, Exception('database is locked'))
        with patch.object(self.db, 'flush', side_effect=failure):
            with self.assertRaises(PersistenceFailure):
                receive_order(
                    self.db,
                    order_id=self.order.id,
                    deliveries={cement.id: DeliveryInput(received_quantity=Decimal('6'))},
                    actor_name='João',
                )

        stored = self.db.get(Order, self.order.id)
        self.assertEqual(stored.status, OrderStatus.APPROVED)
        self.assertIsNone(stored.received_at)
        self.assertEqual(self._children(), [])
        received = self.db.execute(
            select(OrderItem.received_quantity).where(OrderItem.order_id == self.order.id)
        ).scalars().all()
        self.assertEqual(received, [None, None])

    def test_partial_shows_completed_once_complement_completes(self) -> None:
        cement, sand = self.items
        outcome = receive_order(
            self.db,
            order_id=self.order.id,
            deliveries={
                cement.id: DeliveryInput(received_quantity=Decimal('6')),
                sand.id: DeliveryInput(received_quantity=Decimal('5')),
            },
            actor_name='João',
        )
        self.db.commit()
        complement = outcome.complement
        complement.status = OrderStatus.APPROVED
        self.db.commit()
        child_item = load_items(self.db, order_id=complement.id)[0]
        receive_order(
            self.db,
            order_id=complement.id,
            deliveries={child_item.id: DeliveryInput(received_quantity=Decimal('4'))},
            actor_name='João',
        )
        self.db.commit()

        history = get_order_history(self.db, order_id=self.order.id)
        self.assertEqual(history['order']['status'], 'partial')
        self.assertEqual(history['effective_status'], 'completed')
        self.assertEqual(history['complement']['id'], complement.id)
        self.assertEqual(history['lines'][0]['missing_quantity'], Decimal('4'))

        rows = {row['id']: row for row in list_orders(self.db)}
        self.assertEqual(rows[self.order.id]['effective_status'], 'completed')
        self.assertEqual(rows[complement.id]['effective_status'], 'completed')

    def test_same_ref_next_year_does_not_inherit_complement(self) -> None:
        last_year, (old_item,) = add_order(
            self.db,
            site_id=self.site.id,
            user_id=self.worker.id,
            lines=[('Brita 1', '8')],
            status=OrderStatus.APPROVED,
            now=datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc),
        )
        receive_order(
            self.db,
            order_id=last_year.id,
            deliveries={old_item.id: DeliveryInput(received_quantity=Decimal('3'))},
            actor_name='João',
        )
        fresh, _ = add_order(
            self.db,
            site_id=self.site.id,
            user_id=self.worker.id,
            lines=[('Brita 1', '8')],
            status=OrderStatus.PARTIAL,
            now=datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc),
        )
        self.db.commit()

        self.assertEqual(order_ref(fresh), order_ref(last_year))
        self.assertIsNotNone(find_complement_order(self.db, last_year))
        self.assertIsNone(find_complement_order(self.db, fresh))
        self.assertIsNone(get_order_history(self.db, order_id=fresh.id)['complement'])

    def test_unlinked_tagged_order_found_only_when_created_later(self) -> None:
        created = datetime(2025, 6, 10, 12, 0, tzinfo=timezone.utc)
        parent, _ = add_order(
            self.db,
            site_id=self.site.id,
            user_id=self.worker.id,
            lines=[('Cimento', '10')],
            status=OrderStatus.PARTIAL,
            now=created,
        )
        tag = f'[COMPLEMENTO REF {order_ref(parent)}] Cimento'
        add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[(tag, '4')], now=created - timedelta(days=1))
        self.db.commit()
        self.assertIsNone(find_complement_order(self.db, parent))

        later, _ = add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[(tag, '4')], now=created + timedelta(hours=1))
        self.db.commit()
        self.assertEqual(find_complement_order(self.db, parent).id, later.id)

        parent.status = OrderStatus.COMPLETED
        self.assertIsNone(find_complement_order(self.db, parent))


if __name__ == '__main__':
    unittest.main()
