import server


class _RunRecorder:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def __call__(self, app, **kwargs) -> None:
        self.calls.append({"app": app, **kwargs})


def test_main_serves_with_local_defaults(monkeypatch) -> None:
    sentinel_app = object()
    recorder = _RunRecorder()
    monkeypatch.setattr(server, "create_app", lambda: sentinel_app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.delenv("SHOP_HOST", raising=False)
    monkeypatch.delenv("SHOP_PORT", raising=False)

    server.main()

    assert recorder.calls == [{"app": sentinel_app, "host": "127.0.0.1", "port": 5173}]


def test_main_reads_host_and_port_from_env(monkeypatch) -> None:
    sentinel_app = object()
    recorder = _RunRecorder()
    monkeypatch.setattr(server, "create_app", lambda: sentinel_app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.setenv("SHOP_HOST", "0.0.0.0")
    monkeypatch.setenv("SHOP_PORT", "9100")

    server.main()

    assert recorder.calls == [{"app": sentinel_app, "host": "0.0.0.0", "port": 9100}]
