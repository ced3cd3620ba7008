"""
tests.test_presence_and_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

PresenceTracker + RoomRegistry 单元测试。
"""
from __future__ import annotations

from app.services.presence import Device, PresenceTracker
from app.services.room_registry import RoomRegistry
from conftest import FakeConnection


def _device(device_id: str, connection: FakeConnection, role: str = "controller") -> Device:
    return Device(id=device_id, connection=connection, role=role, display_name=f"{role}_{device_id}")


# ── PresenceTracker ───────────────────────────────────────────────────

class TestPresenceTracker:
    """测试设备在线表的注册、注销与解析。"""

    def test_register_and_resolve(self) -> None:
        tracker = PresenceTracker()
        conn = FakeConnection("a")
        tracker.register_device(_device("p1", conn, "presenter"))
        tracker.register_device(_device("c1", conn))

        resolved = tracker.resolve(["c1", "ghost", "p1"])

        assert [d.id for d in resolved] == ["c1", "p1"]
        assert len(tracker) == 2

    def test_reregister_is_last_write_wins(self) -> None:
        tracker = PresenceTracker()
        old_conn, new_conn = FakeConnection("old"), FakeConnection("new")
        tracker.register_device(_device("d1", old_conn, "presenter"))
        tracker.register_device(_device("d1", new_conn, "controller"))

        [device] = tracker.resolve(["d1"])
        assert device.connection is new_conn
        assert device.role == "controller"
        assert len(tracker) == 1

    def test_old_connection_loss_after_takeover_is_noop(self) -> None:
        """设备换了新连接后，旧连接断开不应注销设备。"""
        tracker = PresenceTracker()
        old_conn, new_conn = FakeConnection("old"), FakeConnection("new")
        tracker.register_device(_device("d1", old_conn))
        tracker.register_device(_device("d1", new_conn))

        assert tracker.unregister_by_connection(old_conn) == []
        assert "d1" in tracker

    def test_unregister_by_connection(self) -> None:
        tracker = PresenceTracker()
        conn, other = FakeConnection("a"), FakeConnection("b")
        tracker.register_device(_device("d1", conn))
        tracker.register_device(_device("d2", other))

        removed = tracker.unregister_by_connection(conn)

        assert [d.id for d in removed] == ["d1"]
        assert "d1" not in tracker
        assert "d2" in tracker
        assert tracker.devices_on(conn) == []

    def test_unregister_unknown_connection(self) -> None:
        assert PresenceTracker().unregister_by_connection(FakeConnection("x")) == []

    def test_device_info_hides_connection(self) -> None:
        info = _device("d1", FakeConnection("a"), "presenter").info()
        dumped = info.model_dump(mode="json", by_alias=True)

        assert set(dumped) == {"id", "type", "name", "connectedAt"}
        assert dumped["type"] == "presenter"


# ── RoomRegistry ──────────────────────────────────────────────────────

class TestRoomRegistry:
    """测试房间成员登记、顺序与多房间移除。"""

    def setup_method(self) -> None:
        self.tracker = PresenceTracker()
        self.registry = RoomRegistry(self.tracker)
        self.conns = {name: FakeConnection(name) for name in ("p", "c1", "c2")}
        for name, conn in self.conns.items():
            self.tracker.register_device(_device(name, conn))

    def test_roster_keeps_first_join_order(self) -> None:
        self.registry.add_member("ABC123", "c2")
        self.registry.add_member("ABC123", "p")
        roster = self.registry.add_member("ABC123", "c1")

        assert [d.id for d in roster] == ["c2", "p", "c1"]

    def test_add_member_is_idempotent(self) -> None:
        self.registry.add_member("ABC123", "p")
        self.registry.add_member("ABC123", "c1")
        roster = self.registry.add_member("ABC123", "p")

        assert [d.id for d in roster] == ["p", "c1"]

    def test_remove_member_from_every_room(self) -> None:
        self.registry.add_member("AAAAAA", "p")
        self.registry.add_member("AAAAAA", "c1")
        self.registry.add_member("BBBBBB", "c1")
        self.registry.add_member("BBBBBB", "c2")
        self.registry.add_member("CCCCCC", "c2")

        affected = self.registry.remove_member("c1")

        assert set(affected) == {"AAAAAA", "BBBBBB"}
        assert [d.id for d in affected["AAAAAA"]] == ["p"]
        assert [d.id for d in affected["BBBBBB"]] == ["c2"]
        assert self.registry.rooms_of("c1") == []

    def test_empty_room_is_dropped(self, clock) -> None:
        registry = RoomRegistry(self.tracker, clock=clock)
        registry.add_member("ABC123", "p")

        affected = registry.remove_member("p")

        assert affected == {"ABC123": []}
        assert not registry.has_members("ABC123")
        assert registry.room_codes() == []
        assert registry.emptied_at("ABC123") == clock.now

    def test_rejoin_clears_emptied_marker(self, clock) -> None:
        registry = RoomRegistry(self.tracker, clock=clock)
        registry.add_member("ABC123", "p")
        registry.remove_member("p")
        registry.add_member("ABC123", "c1")

        assert registry.emptied_at("ABC123") is None
        assert registry.empty_room_codes() == []

    def test_leave_single_room(self) -> None:
        self.registry.add_member("AAAAAA", "p")
        self.registry.add_member("BBBBBB", "p")

        roster = self.registry.leave("AAAAAA", "p")

        assert roster == []
        assert self.registry.rooms_of("p") == ["BBBBBB"]
        assert self.registry.leave("AAAAAA", "p") is None

    def test_roster_skips_unregistered_devices(self) -> None:
        self.registry.add_member("ABC123", "p")
        self.registry.add_member("ABC123", "c1")
        self.tracker.unregister_by_connection(self.conns["c1"])

        assert [d.id for d in self.registry.roster("ABC123")] == ["p"]
