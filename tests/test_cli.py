import signal

import pandas as pd
import pytest
import yaml

from univ3_swap_monitor.core.config import ENV_OVERRIDES
from univ3_swap_monitor.core.cursor import FilterCursor
from univ3_swap_monitor.core.decoder import decode
from univ3_swap_monitor.core.errors import StorageError
from univ3_swap_monitor.core.harvesters import rpc_harvester
from univ3_swap_monitor.core.harvesters.rpc_harvester import IngestionLoop, LoopState, main
from univ3_swap_monitor.core.store import EventStore

from conftest import POOL, REFERENCE, FakeChain, make_reference_log, make_swap_log


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(ENV_OVERRIDES) + ["RPC_URLS", "SWAP_MONITOR_CONFIG_PATH"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump({
        "json_rpc_urls": ["https://rpc.example.org"],
        "pool_addr": POOL,
        "db_path": str(tmp_path / "swaps.db"),
        "start_block": 100,
        "poll_interval": 0,
    }))
    return str(path)


def test_export_writes_pickle(tmp_path, config_path):
    with EventStore(str(tmp_path / "swaps.db")) as store:
        store.ensure_schema()
        store.insert_if_absent(decode(make_reference_log()))

    out = tmp_path / "out" / "swaps.pkl"
    assert main(["--config", config_path, "export", "--out", str(out)]) == 0

    df = pd.read_pickle(out)
    assert len(df) == 1
    assert df["tx_hash"].iloc[0] == REFERENCE["tx_hash"]


def test_export_csv(tmp_path, config_path):
    out = tmp_path / "swaps.csv"
    assert main(["--config", config_path, "export", "--out", str(out)]) == 0
    assert out.read_text().startswith("tx_hash,sender_address,receiver_address")


def test_invalid_config_exits_with_2(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text(yaml.safe_dump({"json_rpc_urls": ["https://rpc.example.org"], "pool_addr": "nope"}))
    assert main(["--config", str(path), "run"]) == 2


def test_run_ingests_from_start_block(tmp_path, config_path, monkeypatch, capsys):
    chain = FakeChain(head=101, logs=[make_swap_log(block=100), make_swap_log(block=101)])
    real_run = IngestionLoop.run

    monkeypatch.setattr(rpc_harvester.ChainClient, "from_rpc_urls", classmethod(lambda cls, *a, **kw: chain))
    monkeypatch.setattr(rpc_harvester, "_install_signal_handlers", lambda loop: None)
    monkeypatch.setattr(IngestionLoop, "run", lambda self, max_cycles=None: real_run(self, max_cycles=1))

    assert main(["--config", config_path]) == 0

    out = capsys.readouterr().out
    assert "Monitoring swaps for pool" in out
    assert out.count("new | ") == 2
    assert chain.calls == [(100, 101)]
    with EventStore(str(tmp_path / "swaps.db")) as store:
        assert store.count() == 2
        assert store.load_cursor(POOL) == 101
        rows = store.fetch_all()
    first = rows[0]
    assert (first["amount0"], first["amount1"]) == ("-500", "1000000")
    assert first["sqrt_price"] == "79228162514264337593543950336"
    assert first["liquidity"] == "123456789"
    assert first["tick"] == -12345


class InterruptedChain(FakeChain):
    """Delivers a shutdown signal while eth_getLogs is still running."""

    def __init__(self, handler_box, **kwargs):
        super().__init__(**kwargs)
        self.handler_box = handler_box

    def get_logs(self, contract_address, from_block, to_block, topics=None):
        self.calls.append((from_block, to_block))
        self.handler_box[0](signal.SIGTERM, None)
        raise AssertionError("request should have been abandoned")


def test_signal_during_request_exits_cleanly(tmp_path, config_path, monkeypatch, capsys):
    handler_box = []
    chain = InterruptedChain(handler_box, head=101, logs=[make_swap_log(block=100)])

    monkeypatch.setattr(rpc_harvester.ChainClient, "from_rpc_urls", classmethod(lambda cls, *a, **kw: chain))
    monkeypatch.setattr(
        rpc_harvester, "_install_signal_handlers",
        lambda loop: handler_box.append(rpc_harvester._signal_handler(loop)),
    )

    assert main(["--config", config_path]) == 0

    assert "abandoning the in-flight request" in capsys.readouterr().out
    assert chain.calls == [(100, 101)]
    with EventStore(str(tmp_path / "swaps.db")) as store:
        assert store.count() == 0
        assert store.load_cursor(POOL) is None


def test_signal_outside_request_only_stops(store):
    loop = IngestionLoop(FakeChain(head=100), store, FilterCursor(99), POOL)
    loop.state = LoopState.PERSISTING

    rpc_harvester._signal_handler(loop)(signal.SIGINT, None)

    assert loop.stopped


def test_unreadable_cursor_exits_with_1(config_path, monkeypatch, capsys):
    def locked(self, contract_address):
        raise StorageError("database is locked")

    monkeypatch.setattr(rpc_harvester.ChainClient, "from_rpc_urls", classmethod(lambda cls, *a, **kw: FakeChain()))
    monkeypatch.setattr(EventStore, "load_cursor", locked)

    assert main(["--config", config_path]) == 1
    assert "database is locked" in capsys.readouterr().out
