from datetime import datetime, timedelta

import pytest

from lbengine.config import Notification, Source
from lbengine.engine_config import EngineConfig
from lbengine.notifier import ConfigLoadError, Notifier, rate_limit_vservers
from lbengine.types import Cluster, Vserver


def vs_map(names):
    return {name: Vserver(name=name) for name in names or []}


def vs_name_list(start, length):
    return [f"vs-{i:02d}" for i in range(start, start + length)]


@pytest.mark.parametrize(
    "old, new, want_len",
    [
        (vs_name_list(1, 10), vs_name_list(1, 19), 19),
        (vs_name_list(1, 5), vs_name_list(1, 2) + vs_name_list(6, 8), 2),
        (vs_name_list(1, 11), None, 1),
        (vs_name_list(1, 3), vs_name_list(1, 14), 13),
        (None, vs_name_list(1, 14), 10),
    ],
    ids=[
        "no rate limit",
        "create is skipped",
        "deletion is rate limited",
        "creation is rate limited",
        "old is nil",
    ],
)
def test_rate_limit(old, new, want_len):
    limited = rate_limit_vservers(vs_map(new), vs_map(old))
    assert len(limited) == want_len


def test_rate_limit_with_no_old_config():
    limited = rate_limit_vservers(vs_map(vs_name_list(1, 14)), None)
    assert len(limited) == 10


def test_rate_limit_keeps_existing_when_deleting():
    old = vs_map(vs_name_list(1, 5))
    new = vs_map(vs_name_list(1, 2) + vs_name_list(6, 8))
    limited = rate_limit_vservers(new, old)
    assert sorted(limited) == vs_name_list(1, 2)
    assert limited["vs-01"] is old["vs-01"]


class Holder:
    def __init__(self, cluster, source=Source.SERVER, content=b"cfg"):
        self.cluster = cluster
        self.source = source
        self.content = content
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return Notification(
            cluster=self.cluster,
            source=self.source,
            source_detail="test",
            content=self.content,
        )


def failing():
    raise OSError("unavailable")


def make_config(tmp_path, **kwargs):
    return EngineConfig(cluster_file=str(tmp_path / "cluster.pb"), **kwargs)


def cluster_with(*names, **kwargs):
    return Cluster(site="test", vservers=vs_map(names), **kwargs)


def drained(notifier):
    return notifier.notifications.get_nowait()


def test_bootstrap_falls_back_to_disk(tmp_path):
    disk = Holder(cluster_with("a"), source=Source.DISK)
    notifier = Notifier(
        make_config(tmp_path), {Source.PEER: failing, Source.DISK: disk}, start=False
    )
    note = drained(notifier)
    assert note.source == Source.DISK
    assert list(note.cluster.vservers) == ["a"]
    assert not (tmp_path / "cluster.pb").exists()


def test_bootstrap_fails_without_any_source(tmp_path):
    with pytest.raises(ConfigLoadError):
        Notifier(make_config(tmp_path), {Source.PEER: failing}, start=False)


def test_initial_server_config_is_saved(tmp_path):
    server = Holder(cluster_with("a"), content=b"initial")
    Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    assert (tmp_path / "cluster.pb").read_bytes() == b"initial"


def test_initial_config_rate_limits_vservers(tmp_path):
    server = Holder(cluster_with(*vs_name_list(1, 14)))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    assert len(drained(notifier).cluster.vservers) == 10


def test_config_check_without_change(tmp_path):
    server = Holder(cluster_with("a"))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    drained(notifier)
    notifier.config_check()
    assert notifier.notifications.empty()
    assert server.calls == 2


def test_config_check_sends_change_and_saves(tmp_path):
    server = Holder(cluster_with("a"), content=b"first")
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    drained(notifier)
    server.cluster = cluster_with("a", "b")
    server.content = b"second"
    notifier.config_check()
    note = drained(notifier)
    assert sorted(note.cluster.vservers) == ["a", "b"]
    assert note.metadata_only is False
    assert (tmp_path / "cluster.pb").read_bytes() == b"second"


def test_config_check_detects_metadata_only(tmp_path):
    server = Holder(cluster_with("a"))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    drained(notifier)
    server.cluster = cluster_with("a", warnings=["a: broken"])
    notifier.config_check()
    note = drained(notifier)
    assert note.metadata_only is True
    assert note.cluster.warnings == ["a: broken"]


def test_out_of_date_server_config_is_ignored(tmp_path):
    newer = datetime(2020, 1, 2)
    server = Holder(cluster_with("a", last_update=newer))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    drained(notifier)
    server.cluster = cluster_with("a", "b", last_update=newer - timedelta(days=1))
    notifier.config_check()
    assert notifier.notifications.empty()


def test_full_queue_skips_notification(tmp_path):
    server = Holder(cluster_with("a"))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    server.cluster = cluster_with("a", "b")
    notifier.config_check()
    note = drained(notifier)
    assert list(note.cluster.vservers) == ["a"]
    assert notifier.notifications.empty()


def test_peer_failures_fall_back_to_server(tmp_path):
    server = Holder(cluster_with("a"))
    config = make_config(tmp_path, max_peer_config_sync_errors=3)
    notifier = Notifier(config, {Source.SERVER: server}, start=False)
    drained(notifier)
    notifier.set_source(Source.PEER)
    server.cluster = cluster_with("a", "b")
    notifier.config_check()
    notifier.config_check()
    assert notifier.notifications.empty()
    assert server.calls == 1
    notifier.config_check()
    assert sorted(drained(notifier).cluster.vservers) == ["a", "b"]


def test_source_and_reload(tmp_path):
    server = Holder(cluster_with("a"))
    notifier = Notifier(make_config(tmp_path), {Source.SERVER: server}, start=False)
    assert notifier.source() == Source.SERVER
    notifier.set_source(Source.DISK)
    assert notifier.source() == Source.DISK
    with pytest.raises(RuntimeError):
        notifier.reload()


def test_running_notifier_reloads(tmp_path):
    server = Holder(cluster_with("a"))
    config = make_config(tmp_path, config_interval=timedelta(hours=1))
    notifier = Notifier(config, {Source.SERVER: server})
    try:
        drained(notifier)
        server.cluster = cluster_with("a", "c")
        notifier.reload()
        note = notifier.notifications.get(timeout=5)
        assert sorted(note.cluster.vservers) == ["a", "c"]
    finally:
        notifier.shutdown()