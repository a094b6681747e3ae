"""Tests for committed-change capture and WebSocket fan-out."""

import asyncio
from decimal import Decimal

import pytest
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from app.services.change_feed import (
    ChangeEvent,
    ConnectionManager,
    drain_committed_changes,
    schedule_publish,
)
from app.services.errors import OrderValidationError
from app.services.order_item_service import OrderItemService
from app.services.payment_service import PaymentService, SettlementRequest


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.accepted = False
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        pass

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


class TestChangeCapture:
    def test_commit_records_changes(self, db_session: Session, steak_order):
        events = drain_committed_changes(db_session)
        tables_touched = {e.table for e in events}
        assert {"orders", "order_items", "tables"} <= tables_touched
        assert ChangeEvent("orders", "insert", steak_order.id) in events

    def test_drain_empties_the_buffer(self, db_session: Session, steak_order):
        drain_committed_changes(db_session)
        assert drain_committed_changes(db_session) == []

    def test_rollback_discards_changes(self, db_session: Session, steak_order, menu_items):
        drain_committed_changes(db_session)
        with pytest.raises(OrderValidationError):
            OrderItemService(db_session).add_item(steak_order.id, menu_items["special"].id, 1)

        assert drain_committed_changes(db_session) == []

    def test_item_delete_is_reported(self, db_session: Session, steak_order):
        item_id = steak_order.items[0].id
        drain_committed_changes(db_session)

        OrderItemService(db_session).update_quantity(item_id, 0)

        events = drain_committed_changes(db_session)
        assert ChangeEvent("order_items", "delete", item_id) in events
        assert ChangeEvent("orders", "update", steak_order.id) in events

    def test_replaced_sides_report_deletes(self, db_session: Session, steak_order, sides):
        service = OrderItemService(db_session)
        item = service.replace_sides(steak_order.items[0].id, [sides["fries"].id])
        side_row_id = item.sides[0].id
        drain_committed_changes(db_session)

        service.replace_sides(item.id, [])

        events = drain_committed_changes(db_session)
        assert ChangeEvent("order_item_sides", "delete", side_row_id) in events

    def test_deleted_line_reports_its_sides(self, db_session: Session, steak_order, sides):
        service = OrderItemService(db_session)
        item = service.replace_sides(steak_order.items[0].id, [sides["fries"].id, sides["rice"].id])
        side_row_ids = {side.id for side in item.sides}
        drain_committed_changes(db_session)

        service.delete_item(item.id)

        events = drain_committed_changes(db_session)
        deleted_sides = {e.row_id for e in events if e.table == "order_item_sides" and e.action == "delete"}
        assert deleted_sides == side_row_ids
        assert ChangeEvent("order_items", "delete", item.id) in events

    def test_settlement_reports_payment_and_table(self, db_session: Session, steak_order, payment_methods):
        drain_committed_changes(db_session)
        payment = PaymentService(db_session).settle(
            SettlementRequest(
                order_id=steak_order.id,
                payment_method_id=payment_methods["cash"].id,
                received_amount=Decimal("50000"),
            )
        )

        events = drain_committed_changes(db_session)
        assert ChangeEvent("payments", "insert", payment.id) in events
        assert any(e.table == "tables" and e.action == "update" for e in events)

    def test_untracked_tables_are_ignored(self, db_session: Session, payment_methods):
        assert drain_committed_changes(db_session) == []

    def test_schedule_publish_queues_task(self, db_session: Session, steak_order):
        background_tasks = BackgroundTasks()
        events = schedule_publish(background_tasks, db_session)
        assert events
        assert len(background_tasks.tasks) == 1

    def test_schedule_publish_without_changes(self, db_session: Session):
        background_tasks = BackgroundTasks()
        assert schedule_publish(background_tasks, db_session) == []
        assert background_tasks.tasks == []


class TestConnectionManager:
    def test_broadcast_reaches_channel_subscribers(self):
        manager = ConnectionManager()
        orders_ws = FakeWebSocket()
        tables_ws = FakeWebSocket()

        async def scenario():
            await manager.connect(orders_ws, "orders", user_id=1)
            await manager.connect(tables_ws, "tables", user_id=2)
            await manager.broadcast(ChangeEvent("orders", "update", 5).to_message(), "orders")

        asyncio.run(scenario())

        assert orders_ws.accepted
        assert orders_ws.sent == [{"type": "change", "table": "orders", "action": "update", "id": 5}]
        assert tables_ws.sent == []

    def test_dead_connections_are_dropped(self):
        manager = ConnectionManager()
        dead = FakeWebSocket(fail=True)

        async def scenario():
            await manager.connect(dead, "orders")
            await manager.broadcast({"type": "change"}, "orders")

        asyncio.run(scenario())
        assert manager.get_connection_count("orders") == 0

    def test_channel_capacity(self):
        manager = ConnectionManager()
        manager.MAX_CONNECTIONS_PER_CHANNEL = 1

        async def scenario():
            first = await manager.connect(FakeWebSocket(), "orders")
            second = await manager.connect(FakeWebSocket(), "orders")
            return first, second

        assert asyncio.run(scenario()) == (True, False)
