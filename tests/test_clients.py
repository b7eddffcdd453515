"""
Tests for the open-page registry and controller claims.
"""

from stillspace.clients import ClientRegistry


class TestClientRegistry:
    def test_attach_and_detach(self):
        clients = ClientRegistry()
        page = clients.attach("/timer")
        assert clients.get(page.id).url == "/timer"
        assert len(clients) == 1
        assert clients.detach(page.id) is True
        assert clients.detach(page.id) is False
        assert clients.get(page.id) is None

    def test_claim_changes_controller_and_notifies(self):
        clients = ClientRegistry()
        old = clients.attach("/", controller="v1")
        fresh = clients.attach("/records")
        changes = []
        clients.add_controllerchange_listener(lambda c, prev, cur: changes.append((c.id, prev, cur)))

        assert clients.claim("v2") == 2
        assert changes == [(old.id, "v1", "v2"), (fresh.id, None, "v2")]
        assert {c.controller for c in clients.match_all()} == {"v2"}

    def test_claim_by_current_controller_is_noop(self):
        clients = ClientRegistry()
        clients.attach("/", controller="v1")
        changes = []
        clients.add_controllerchange_listener(lambda *args: changes.append(args))
        assert clients.claim("v1") == 0
        assert changes == []

    def test_removed_listener_not_called(self):
        clients = ClientRegistry()
        clients.attach("/")
        changes = []

        def listener(client, previous, current):
            changes.append(current)

        clients.add_controllerchange_listener(listener)
        clients.remove_controllerchange_listener(listener)
        clients.claim("v1")
        assert changes == []

    def test_open_window(self):
        clients = ClientRegistry()
        page = clients.open_window("/timer", controller="v1")
        assert page.to_dict() == {"id": page.id, "url": "/timer", "controller": "v1"}
        assert clients.match_all() == [page]
