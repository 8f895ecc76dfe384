import socket

from wscontroller.core.network import RouteReachability


def test_loopback_route_is_reachable():
    assert RouteReachability("127.0.0.1", 53).is_reachable()


def test_connect_error_means_unreachable(monkeypatch):
    class NoRoute(socket.socket):
        def connect(self, address):
            raise OSError(101, "Network is unreachable")

    monkeypatch.setattr(socket, "socket", NoRoute)

    assert RouteReachability("203.0.113.1", 53).is_reachable() is False
