from __future__ import annotations

import unittest
from decimal import Decimal

from supply_portal.errors import ValidationError
from supply_portal.schemas import ReceiveRequest


class ReceiveRequestTests(unittest.TestCase):
    def test_to_inputs_keys_deliveries_by_item(self) -> None:
        payload = ReceiveRequest(
            deliveries=[
                {'item_id': 1, 'received_quantity': '6', 'unit_value': '32.50', 'supplier_id': 3},
                {'item_id': 2},
            ]
        )
        inputs = payload.to_inputs()
        self.assertEqual(sorted(inputs), [1, 2])
        self.assertEqual(inputs[1].received_quantity, Decimal('6'))
        self.assertEqual(inputs[1].supplier_id, 3)
        self.assertEqual(inputs[2].received_quantity, Decimal('0'))

    def test_repeated_item_is_rejected(self) -> None:
        payload = ReceiveRequest(
            deliveries=[
                {'item_id': 1, 'received_quantity': '10'},
                {'item_id': 1, 'received_quantity': '0'},
            ]
        )
        with self.assertRaises(ValidationError) as ctx:
            payload.to_inputs()
        self.assertIn('Item 1', str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
