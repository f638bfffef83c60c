from __future__ import annotations

import unittest
from decimal import Decimal

from factories import add_material, add_order, add_profile, add_site, make_sessionmaker
from supply_portal.errors import OrderNotFound, StaleOrder, ValidationError
from supply_portal.models import OrderStatus, ProfileRole
from supply_portal.services.order_ref_utils import order_ref
from supply_portal.services.order_service import (
    ItemInput,
    create_order,
    dashboard_counts,
    get_order_detail,
    list_orders,
    load_items,
    update_order_items,
)
from supply_portal.services.status_transition_service import transition_order


class OrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_sessionmaker()()
        self.site = add_site(self.db)
        self.other_site = add_site(self.db, 'Obra Norte')
        self.worker = add_profile(self.db, username='w', name='Carlos', role=ProfileRole.WORKER, site_id=self.site.id)
        self.cement = add_material(self.db, 'Cimento CP-II 50kg', unit='sc')
        self.sand = add_material(self.db, 'Areia média', unit='m3')

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, items: list[ItemInput], site_id: int | None = None):
        return create_order(
            self.db,
            site_id=self.site.id if site_id is None else site_id,
            user_id=self.worker.id,
            items=items,
        )

    def test_create_order_uses_catalog_and_custom_items(self) -> None:
        order = self._create(
            [
                ItemInput(quantity=Decimal('10'), material_id=self.cement.id),
                ItemInput(quantity=Decimal('2'), description='  Manta   asfáltica '),
            ]
        )
        self.db.commit()

        self.assertEqual(order.status, OrderStatus.NEW)
        self.assertEqual(order.seq_number, 1)
        items = load_items(self.db, order_id=order.id)
        self.assertEqual([(row.name, row.unit) for row in items], [('Cimento CP-II 50kg', 'sc'), ('(NOVO) Manta asfáltica', 'un')])
        self.assertIsNone(items[1].material_id)

    def test_duplicate_catalog_materials_are_merged(self) -> None:
        order = self._create(
            [
                ItemInput(quantity=Decimal('4'), material_id=self.cement.id),
                ItemInput(quantity=Decimal('1'), material_id=self.sand.id),
                ItemInput(quantity=Decimal('6'), material_id=self.cement.id),
            ]
        )
        items = load_items(self.db, order_id=order.id)
        self.assertEqual([(row.material_id, row.quantity) for row in items], [(self.cement.id, Decimal('10')), (self.sand.id, Decimal('1'))])

    def test_sequence_numbers_increase_per_reference_day(self) -> None:
        first = self._create([ItemInput(quantity=Decimal('1'), material_id=self.cement.id)])
        second = self._create([ItemInput(quantity=Decimal('1'), material_id=self.sand.id)])
        self.assertEqual(second.seq_number, first.seq_number + 1)
        self.assertEqual(first.ref_date, second.ref_date)
        self.assertTrue(order_ref(second).endswith('_0002'))

    def test_create_order_validation(self) -> None:
        cases = [
            [],
            [ItemInput(quantity=Decimal('0'), material_id=self.cement.id)],
            [ItemInput(quantity=Decimal('1'), description='   ')],
            [ItemInput(quantity=Decimal('1'), material_id=999)],
        ]
        for items in cases:
            with self.assertRaises(ValidationError):
                self._create(items)
        with self.assertRaises(ValidationError):
            self._create([ItemInput(quantity=Decimal('1'), material_id=self.cement.id)], site_id=999)

    def test_update_only_pending_orders(self) -> None:
        order = self._create([ItemInput(quantity=Decimal('1'), material_id=self.cement.id)])
        self.db.commit()

        updated = update_order_items(
            self.db,
            order_id=order.id,
            site_id=self.other_site.id,
            items=[ItemInput(quantity=Decimal('3'), material_id=self.sand.id)],
            observations='Entregar pela manhã',
            expected_version=order.version,
        )
        self.db.commit()
        self.assertEqual(updated.site_id, self.other_site.id)
        self.assertEqual(updated.observations, 'Entregar pela manhã')
        self.assertEqual([row.name for row in load_items(self.db, order_id=order.id)], ['Areia média'])

        with self.assertRaises(StaleOrder):
            update_order_items(
                self.db,
                order_id=order.id,
                site_id=self.site.id,
                items=[ItemInput(quantity=Decimal('1'), material_id=self.cement.id)],
                expected_version=1,
            )

        transition_order(self.db, order_id=order.id, target=OrderStatus.APPROVED, actor_name='Admin')
        with self.assertRaises(ValidationError):
            update_order_items(
                self.db,
                order_id=order.id,
                site_id=self.site.id,
                items=[ItemInput(quantity=Decimal('1'), material_id=self.cement.id)],
            )

    def test_detail_is_scoped_to_site(self) -> None:
        order, _ = add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[('Cimento', '1')])
        detail = get_order_detail(self.db, order_id=order.id, site_id=self.site.id)
        self.assertEqual(detail['ref'], order_ref(order))
        self.assertEqual(detail['status_label'], 'Pendente')
        with self.assertRaises(OrderNotFound):
            get_order_detail(self.db, order_id=order.id, site_id=self.other_site.id)

    def test_list_orders_search_and_filters(self) -> None:
        pending, _ = add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[('Cimento', '1')])
        approved, _ = add_order(
            self.db,
            site_id=self.other_site.id,
            user_id=self.worker.id,
            lines=[('Areia', '1'), ('Brita', '2')],
            status=OrderStatus.APPROVED,
        )

        self.assertEqual([row['id'] for row in list_orders(self.db, site_id=self.site.id)], [pending.id])
        self.assertEqual([row['id'] for row in list_orders(self.db, statuses=[OrderStatus.APPROVED])], [approved.id])
        self.assertEqual([row['id'] for row in list_orders(self.db, search='norte')], [approved.id])
        self.assertEqual([row['id'] for row in list_orders(self.db, search='pendente')], [pending.id])
        self.assertEqual([row['id'] for row in list_orders(self.db, search=order_ref(pending))], [pending.id])
        rows = list_orders(self.db, search='carlos')
        self.assertEqual({row['id'] for row in rows}, {pending.id, approved.id})
        self.assertEqual({row['id']: row['item_count'] for row in rows}[approved.id], 2)

    def test_dashboard_counts(self) -> None:
        add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[('Cimento', '1')])
        add_order(self.db, site_id=self.site.id, user_id=self.worker.id, lines=[('Areia', '1')], status=OrderStatus.APPROVED)
        add_order(self.db, site_id=self.other_site.id, user_id=self.worker.id, lines=[('Brita', '1')])

        counts = dashboard_counts(self.db)
        self.assertEqual(counts['new'], 2)
        self.assertEqual(counts['approved'], 1)
        self.assertEqual(counts['completed'], 0)
        self.assertEqual(counts['total'], 3)
        self.assertEqual(dashboard_counts(self.db, site_id=self.other_site.id)['total'], 1)


if __name__ == '__main__':
    unittest.main()
